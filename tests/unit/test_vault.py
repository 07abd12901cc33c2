"""Unit tests for the Vault key client."""

from __future__ import annotations

import httpx
import pytest

from cephplan.errors import KeyRetrievalError
from cephplan.kms import VaultKeyClient, VaultSettings, extract_key

KEK = "rook-ceph-osd-encryption-key-set1-data-0"


def make_client(handler, **settings) -> VaultKeyClient:
    defaults = {"address": "https://vault.example:8200", "token": "s.token", "backend_path": "rook"}
    defaults.update(settings)
    return VaultKeyClient(VaultSettings(**defaults), transport=httpx.MockTransport(handler))


class TestVaultSettings:
    """Tests for VaultSettings."""

    def test_from_env(self):
        """Test loading settings from VAULT_* variables."""
        settings = VaultSettings.from_env(
            {
                "VAULT_ADDR": "https://vault:8200",
                "VAULT_TOKEN": "s.token",
                "VAULT_BACKEND_PATH": "rook",
                "VAULT_BACKEND": "v2",
                "VAULT_NAMESPACE": "team-a",
                "VAULT_SKIP_VERIFY": "true",
            }
        )
        assert settings.address == "https://vault:8200"
        assert settings.is_kv_v2
        assert settings.namespace == "team-a"
        assert settings.skip_verify

    def test_from_env_defaults(self):
        """Test defaults for optional variables."""
        settings = VaultSettings.from_env({"VAULT_ADDR": "http://v", "VAULT_TOKEN": "t"})
        assert settings.backend_path == "secret"
        assert settings.backend_version == "v1"
        assert not settings.skip_verify

    def test_from_env_requires_address(self):
        """Test that the address is mandatory."""
        with pytest.raises(KeyRetrievalError, match="VAULT_ADDR"):
            VaultSettings.from_env({"VAULT_TOKEN": "t"})

    def test_from_env_requires_token(self):
        """Test that the token is mandatory."""
        with pytest.raises(KeyRetrievalError, match="VAULT_TOKEN"):
            VaultSettings.from_env({"VAULT_ADDR": "http://v"})

    def test_secret_path(self):
        """Test KV v1 and v2 secret paths."""
        v1 = VaultSettings(address="http://v", token="t", backend_path="/rook/")
        v2 = VaultSettings(address="http://v", token="t", backend_path="rook", backend_version="v2")
        assert v1.secret_path("k") == "/v1/rook/k"
        assert v2.secret_path("k") == "/v1/rook/data/k"

    def test_headers(self):
        """Test token and namespace headers."""
        settings = VaultSettings(address="http://v", token="t", namespace="ns")
        assert settings.headers() == {"X-Vault-Token": "t", "X-Vault-Namespace": "ns"}
        assert "X-Vault-Namespace" not in VaultSettings(address="http://v", token="t").headers()


class TestVaultKeyClient:
    """Tests for VaultKeyClient.fetch_key."""

    def test_kv_v1(self):
        """Test fetching from a KV v1 engine."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["token"] = request.headers.get("X-Vault-Token")
            return httpx.Response(200, json={"data": {KEK: "c2VjcmV0"}})

        assert make_client(handler).fetch_key(KEK) == "c2VjcmV0"
        assert seen == {"path": f"/v1/rook/{KEK}", "token": "s.token"}

    def test_kv_v2(self):
        """Test fetching from a KV v2 engine."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/v1/rook/data/{KEK}"
            return httpx.Response(200, json={"data": {"data": {KEK: "djI="}}})

        assert make_client(handler, backend_version="v2").fetch_key(KEK) == "djI="

    def test_namespace_header(self):
        """Test that the namespace header is sent."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers.get("X-Vault-Namespace") == "team-a"
            return httpx.Response(200, json={"data": {KEK: "a2V5"}})

        assert make_client(handler, namespace="team-a").fetch_key(KEK) == "a2V5"

    def test_errors_field(self):
        """Test that Vault errors are surfaced."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"errors": ["permission denied"]})

        with pytest.raises(KeyRetrievalError, match="permission denied") as exc_info:
            make_client(handler).fetch_key(KEK)
        assert exc_info.value.data["http_status"] == 403

    def test_missing_key(self):
        """Test that a response without the key is a failure."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"other": "x"}, "warnings": ["w"]})

        with pytest.raises(KeyRetrievalError, match="not found"):
            make_client(handler).fetch_key(KEK)

    def test_connection_error(self):
        """Test that transport failures become retrieval errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(KeyRetrievalError, match="Cannot reach Vault"):
            make_client(handler).fetch_key(KEK)

    def test_timeout(self):
        """Test that timeouts become retrieval errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(KeyRetrievalError, match="timed out"):
            make_client(handler).fetch_key(KEK)


class TestExtractKey:
    """Tests for extract_key."""

    def test_non_json(self):
        """Test that a non-JSON body is malformed."""
        response = httpx.Response(502, text="<html>bad gateway</html>")
        with pytest.raises(KeyRetrievalError, match="Malformed"):
            extract_key(response, KEK, kv_v2=False)

    def test_non_object(self):
        """Test that a JSON list is malformed."""
        response = httpx.Response(200, json=["a"])
        with pytest.raises(KeyRetrievalError, match="Malformed"):
            extract_key(response, KEK, kv_v2=False)

    def test_empty_key(self):
        """Test that an empty key is treated as missing."""
        response = httpx.Response(200, json={"data": {KEK: ""}})
        with pytest.raises(KeyRetrievalError):
            extract_key(response, KEK, kv_v2=False)

    def test_v1_payload_read_as_v2(self):
        """Test that a v1 payload does not satisfy a v2 lookup."""
        response = httpx.Response(200, json={"data": {KEK: "a2V5"}})
        with pytest.raises(KeyRetrievalError):
            extract_key(response, KEK, kv_v2=True)

    def test_empty_errors_field_fails(self):
        """Test that an errors field fails the read even when it is empty."""
        response = httpx.Response(200, json={"errors": [], "data": {KEK: "a2V5"}})
        with pytest.raises(KeyRetrievalError, match="no detail"):
            extract_key(response, KEK, kv_v2=False)

    def test_null_errors_field_fails(self):
        """Test that a null errors field fails the read."""
        response = httpx.Response(200, json={"errors": None, "data": {KEK: "a2V5"}})
        with pytest.raises(KeyRetrievalError):
            extract_key(response, KEK, kv_v2=False)
