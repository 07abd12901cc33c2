"""HTTP client for Vault key retrieval.

Reads a key encryption key from a Vault KV engine with token auth. It
follows the same contract as the key retrieval init container: settings
come from VAULT_* environment variables, KV v1 keeps the secret under
`data`, v2 under `data.data`, and an `errors` field or a missing key is a
hard failure.
"""

from __future__ import annotations

import os
import ssl
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import KeyRetrievalError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class VaultSettings:
    """Connection settings as seen from inside the pod."""

    address: str
    token: str
    backend_path: str = "secret"
    backend_version: str = "v1"
    namespace: str = ""
    skip_verify: bool = False
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""
    tls_server_name: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> VaultSettings:
        """Load settings from VAULT_* environment variables.

        Raises:
            KeyRetrievalError: If the address or token is missing
        """
        env = os.environ if environ is None else environ
        address = env.get("VAULT_ADDR", "")
        token = env.get("VAULT_TOKEN", "")
        if not address:
            raise KeyRetrievalError(message="VAULT_ADDR is not set")
        if not token:
            raise KeyRetrievalError(message="VAULT_TOKEN is not set")
        return cls(
            address=address,
            token=token,
            backend_path=env.get("VAULT_BACKEND_PATH", "secret"),
            backend_version=env.get("VAULT_BACKEND", "v1") or "v1",
            namespace=env.get("VAULT_NAMESPACE", ""),
            skip_verify=env.get("VAULT_SKIP_VERIFY", "") == "true",
            ca_cert=env.get("VAULT_CACERT", ""),
            client_cert=env.get("VAULT_CLIENT_CERT", ""),
            client_key=env.get("VAULT_CLIENT_KEY", ""),
            tls_server_name=env.get("VAULT_TLS_SERVER_NAME", ""),
        )

    @property
    def is_kv_v2(self) -> bool:
        return self.backend_version == "v2"

    def secret_path(self, kek_name: str) -> str:
        backend = self.backend_path.strip("/")
        if self.is_kv_v2:
            backend = f"{backend}/data"
        return f"/v1/{backend}/{kek_name}"

    def headers(self) -> dict[str, str]:
        headers = {"X-Vault-Token": self.token}
        if self.namespace:
            headers["X-Vault-Namespace"] = self.namespace
        return headers


class VaultKeyClient:
    """Fetch keys from Vault."""

    def __init__(
        self,
        settings: VaultSettings,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            settings: Vault connection settings
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.settings = settings
        self.timeout = timeout
        self.transport = transport

    def _ssl_context(self) -> ssl.SSLContext | bool:
        settings = self.settings
        if not (settings.skip_verify or settings.ca_cert or settings.client_cert):
            return True
        context = ssl.create_default_context(cafile=settings.ca_cert or None)
        if settings.client_cert:
            context.load_cert_chain(settings.client_cert, settings.client_key or None)
        if settings.skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _client(self) -> httpx.Client:
        if self.transport is not None:
            return httpx.Client(
                base_url=self.settings.address.rstrip("/"),
                timeout=self.timeout,
                transport=self.transport,
            )
        try:
            verify = self._ssl_context()
        except (OSError, ssl.SSLError) as e:
            raise KeyRetrievalError(message=f"Invalid Vault TLS material: {e}") from e
        return httpx.Client(
            base_url=self.settings.address.rstrip("/"),
            timeout=self.timeout,
            verify=verify,
        )

    def fetch_key(self, kek_name: str) -> str:
        """Fetch one key.

        Args:
            kek_name: Name of the key inside the KV backend

        Returns:
            Key material

        Raises:
            KeyRetrievalError: On connection, HTTP, or payload errors
        """
        path = self.settings.secret_path(kek_name)
        extensions = {}
        if self.settings.tls_server_name:
            extensions["sni_hostname"] = self.settings.tls_server_name

        logger.debug("fetching key from vault", kek=kek_name, path=path)
        with self._client() as client:
            try:
                response = client.get(path, headers=self.settings.headers(), extensions=extensions)
            except httpx.TimeoutException as e:
                raise KeyRetrievalError(
                    message=f"Vault request timed out after {self.timeout}s",
                    data={"kek": kek_name},
                ) from e
            except httpx.HTTPError as e:
                raise KeyRetrievalError(
                    message=f"Cannot reach Vault at {self.settings.address}: {e}",
                    data={"kek": kek_name},
                ) from e

        return extract_key(response, kek_name, self.settings.is_kv_v2)


def extract_key(response: httpx.Response, kek_name: str, kv_v2: bool) -> str:
    """Pull the key out of a Vault KV response.

    Raises:
        KeyRetrievalError: If the payload is not JSON, carries errors, or
            lacks the key
    """
    try:
        payload: Any = response.json()
    except ValueError as e:
        raise KeyRetrievalError(
            message=f"Malformed Vault response (HTTP {response.status_code})",
            data={"kek": kek_name, "http_status": response.status_code},
        ) from e

    if not isinstance(payload, dict):
        raise KeyRetrievalError(message="Malformed Vault response", data={"kek": kek_name})

    # Any errors field fails the read, even an empty one
    if "errors" in payload:
        errors = payload["errors"]
        detail = "; ".join(map(str, errors)) if isinstance(errors, list) else str(errors or "")
        raise KeyRetrievalError(
            message=f"Vault returned errors: {detail or '(no detail)'}",
            data={"kek": kek_name, "http_status": response.status_code},
        )

    node: Any = payload
    for field_name in ("data", "data") if kv_v2 else ("data",):
        node = node.get(field_name) if isinstance(node, dict) else None

    key = node.get(kek_name) if isinstance(node, dict) else None
    if not isinstance(key, str) or not key:
        if payload.get("warnings"):
            logger.warning("vault warnings", kek=kek_name, warnings=payload["warnings"])
        raise KeyRetrievalError(
            message=f"Key '{kek_name}' not found in Vault response",
            data={"kek": kek_name, "http_status": response.status_code},
        )
    return key
