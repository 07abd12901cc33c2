"""Key-management service integration.

- KMSConfig: connection details from the cephplan config
- VaultKeyClient: in-process key retrieval over HTTP
"""

from .config import (
    AUTH_TOKEN,
    PROVIDER_VAULT,
    KMSConfig,
    encryption_secret_name,
)
from .vault import VaultKeyClient, VaultSettings, extract_key

__all__ = [
    "AUTH_TOKEN",
    "PROVIDER_VAULT",
    "KMSConfig",
    "encryption_secret_name",
    "VaultKeyClient",
    "VaultSettings",
    "extract_key",
]
