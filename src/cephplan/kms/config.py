"""Key-management service connection settings.

Holds the Vault connection details the way they are declared in the
cephplan config, and renders them into what the key retrieval init
container needs: environment variables and the TLS material volume.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import ValidationError
from ..shared.paths import VAULT_TLS_DIR

PROVIDER_VAULT = "vault"
AUTH_TOKEN = "token"
SUPPORTED_PROVIDERS = (PROVIDER_VAULT,)
KV_VERSIONS = ("v1", "v2")

ENCRYPTION_SECRET_PREFIX = "rook-ceph-osd-encryption-key-"
VAULT_TOKEN_SECRET_KEY = "token"
VAULT_TLS_VOLUME_NAME = "vault-tls"

# File names of the TLS material inside VAULT_TLS_DIR
VAULT_CA_FILE = "vault.ca"
VAULT_CLIENT_CERT_FILE = "vault.crt"
VAULT_CLIENT_KEY_FILE = "vault.key"


def encryption_secret_name(claim: str) -> str:
    """Name of the per-claim secret (and KEK) holding the dm-crypt key."""
    return f"{ENCRYPTION_SECRET_PREFIX}{claim}"


@dataclass
class KMSConfig:
    """Vault connection details."""

    provider: str = ""
    auth_method: str = AUTH_TOKEN
    address: str = ""
    backend_path: str = "secret"
    backend_version: str = "v1"
    namespace: str = ""
    tls_server_name: str = ""
    skip_verify: bool = False
    token_secret: str = ""
    ca_cert_secret: str = ""
    client_cert_secret: str = ""
    client_key_secret: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.provider)

    @property
    def token_auth_enabled(self) -> bool:
        return self.auth_method == AUTH_TOKEN and bool(self.token_secret)

    @property
    def has_tls(self) -> bool:
        return bool(self.ca_cert_secret or self.client_cert_secret or self.client_key_secret)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> KMSConfig:
        """Parse the `kms` section of the config file.

        Raises:
            ValidationError: On unknown keys or unsupported values
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError(message="kms: expected a mapping")

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(
                message=f"kms: unknown keys {', '.join(unknown)}",
                data={"unknown": unknown},
            )

        config = cls(**data)
        config.skip_verify = _as_bool(config.skip_verify)
        if config.provider and config.provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(
                message=f"kms: unsupported provider '{config.provider}'",
                data={"provider": config.provider},
            )
        if config.backend_version not in KV_VERSIONS:
            raise ValidationError(
                message=f"kms: backend_version must be one of {', '.join(KV_VERSIONS)}",
                data={"backend_version": config.backend_version},
            )
        if config.enabled and not config.address:
            raise ValidationError(message="kms: address is required when a provider is set")
        if config.enabled and config.auth_method != AUTH_TOKEN:
            raise ValidationError(
                message=f"kms: unsupported auth_method '{config.auth_method}'",
                data={"auth_method": config.auth_method},
            )
        if config.enabled and not config.token_secret:
            raise ValidationError(message="kms: token_secret is required for token auth")
        return config

    def env_vars(self) -> list[dict[str, Any]]:
        """Environment for the key retrieval container.

        The token itself comes from a secret reference so it never appears
        in the rendered deployment.
        """
        env: list[dict[str, Any]] = [
            {"name": "VAULT_ADDR", "value": self.address},
            {"name": "VAULT_BACKEND_PATH", "value": self.backend_path},
            {"name": "VAULT_BACKEND", "value": self.backend_version},
        ]
        if self.namespace:
            env.append({"name": "VAULT_NAMESPACE", "value": self.namespace})
        if self.tls_server_name:
            env.append({"name": "VAULT_TLS_SERVER_NAME", "value": self.tls_server_name})
        if self.skip_verify:
            env.append({"name": "VAULT_SKIP_VERIFY", "value": "true"})
        if self.ca_cert_secret:
            env.append({"name": "VAULT_CACERT", "value": f"{VAULT_TLS_DIR}/{VAULT_CA_FILE}"})
        if self.client_cert_secret:
            env.append(
                {"name": "VAULT_CLIENT_CERT", "value": f"{VAULT_TLS_DIR}/{VAULT_CLIENT_CERT_FILE}"}
            )
        if self.client_key_secret:
            env.append(
                {"name": "VAULT_CLIENT_KEY", "value": f"{VAULT_TLS_DIR}/{VAULT_CLIENT_KEY_FILE}"}
            )
        if self.token_secret:
            env.append(
                {
                    "name": "VAULT_TOKEN",
                    "valueFrom": {
                        "secretKeyRef": {
                            "name": self.token_secret,
                            "key": VAULT_TOKEN_SECRET_KEY,
                        }
                    },
                }
            )
        return env

    def tls_volume(self) -> dict[str, Any] | None:
        """Projected volume with the Vault TLS material, if any is configured."""
        if not self.has_tls:
            return None

        sources = []
        for secret, file_name in (
            (self.ca_cert_secret, VAULT_CA_FILE),
            (self.client_cert_secret, VAULT_CLIENT_CERT_FILE),
            (self.client_key_secret, VAULT_CLIENT_KEY_FILE),
        ):
            if secret:
                sources.append(
                    {
                        "secret": {
                            "name": secret,
                            "items": [{"key": file_name, "path": file_name}],
                        }
                    }
                )
        return {
            "name": VAULT_TLS_VOLUME_NAME,
            "projected": {"sources": sources, "defaultMode": 0o400},
        }


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
