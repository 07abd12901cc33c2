"""Encryption key flow.

Two halves of the same lifecycle, NO_KEY -> KEY_REQUESTED -> KEY_OBTAINED
-> KEY_CONSUMED:

- `KeyStepFactory` emits the preparatory steps that obtain the key inside
  the pod (secret mount or KMS retrieval) and open encrypted devices with it.
- `EncryptionKeyFlow` runs the same lifecycle in-process, for operators and
  for the `cephplan kms get-kek` command.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from ..errors import KeyRetrievalError, PlanBuildError
from ..kms.config import AUTH_TOKEN, PROVIDER_VAULT, KMSConfig, encryption_secret_name
from ..shared.logging import get_logger
from ..shared.paths import DEVICE_MAPPER_DIR, ETC_CEPH_DIR, VAULT_TLS_DIR
from .bridges import MountBridge
from .plan import PipelineStep, VolumeMount
from .scripts import FETCH_KEK_VAULT_TOKEN, OPEN_ENCRYPTED_BLOCK
from .topology import KeySource, KeySourceKind

logger = get_logger(__name__)

KEY_FILE_NAME = "luks_key"
KEY_PATH = f"{ETC_CEPH_DIR}/{KEY_FILE_NAME}"
KEY_VOLUME_NAME = "osd-encryption-key"
KEY_SECRET_ITEM = "dmcrypt-key"
DEVICE_MAPPER_VOLUME_NAME = "dev-mapper"

KMS_GET_KEK_STEP = "encryption-kms-get-kek"


class KeyState(Enum):
    """Lifecycle of the key material."""

    NO_KEY = "no_key"
    KEY_REQUESTED = "key_requested"
    KEY_OBTAINED = "key_obtained"
    KEY_CONSUMED = "key_consumed"


def dm_name(claim: str, crypt_type: str) -> str:
    """Device-mapper name of an opened claim ("set1-data-0-block-dmcrypt")."""
    return f"{claim}-{crypt_type}"


def dm_path(claim: str, crypt_type: str) -> str:
    return f"{DEVICE_MAPPER_DIR}/{dm_name(claim, crypt_type)}"


def device_mapper_volume() -> dict[str, Any]:
    return {
        "name": DEVICE_MAPPER_VOLUME_NAME,
        "hostPath": {"path": DEVICE_MAPPER_DIR, "type": "Directory"},
    }


def device_mapper_mount() -> VolumeMount:
    return VolumeMount(name=DEVICE_MAPPER_VOLUME_NAME, mount_path=DEVICE_MAPPER_DIR)


class KeyStepFactory:
    """Build the key-handling steps and volumes of one encrypted daemon."""

    def __init__(
        self,
        key_source: KeySource,
        kms: KMSConfig,
        claim: str,
        image: str,
        resources: dict[str, Any] | None = None,
    ):
        """Initialize factory.

        Args:
            key_source: Where the key comes from
            kms: KMS connection details (used for REMOTE_KMS)
            claim: Primary claim; the key is named after it for every volume
            image: Image running the steps
            resources: Resource requirements copied onto every step
        """
        if key_source.kind == KeySourceKind.NONE:
            raise PlanBuildError(message="Key steps requested for an unencrypted daemon")
        if key_source.is_remote:
            if key_source.provider != PROVIDER_VAULT:
                raise PlanBuildError(
                    message=f"Unsupported KMS provider '{key_source.provider}'",
                    data={"provider": key_source.provider},
                )
            if key_source.auth_mode != AUTH_TOKEN:
                raise PlanBuildError(
                    message=f"Unsupported KMS auth method '{key_source.auth_mode}'",
                    data={"auth_method": key_source.auth_mode},
                )
            if not kms.token_secret:
                raise PlanBuildError(
                    message="KMS token auth needs a token_secret",
                    data={"auth_method": key_source.auth_mode},
                )
        self.key_source = key_source
        self.kms = kms
        self.claim = claim
        self.image = image
        self.resources = resources or {}

    def key_volume(self) -> dict[str, Any]:
        """Where the key lives inside the pod.

        A local key is the per-claim secret. A KMS key is written by the
        retrieval step into memory-backed storage.
        """
        if self.key_source.is_remote:
            return {"name": KEY_VOLUME_NAME, "emptyDir": {"medium": "Memory"}}
        return {
            "name": KEY_VOLUME_NAME,
            "secret": {
                "secretName": encryption_secret_name(self.claim),
                "items": [{"key": KEY_SECRET_ITEM, "path": KEY_FILE_NAME}],
            },
        }

    def key_mount(self) -> VolumeMount:
        return VolumeMount(name=KEY_VOLUME_NAME, mount_path=ETC_CEPH_DIR)

    def volumes(self) -> list[dict[str, Any]]:
        volumes = [self.key_volume()]
        if self.key_source.is_remote:
            tls_volume = self.kms.tls_volume()
            if tls_volume:
                volumes.append(tls_volume)
        return volumes

    def retrieval_steps(self) -> list[PipelineStep]:
        """Steps that obtain the key (none for a local secret)."""
        if not self.key_source.is_remote:
            return []

        mounts = [self.key_mount()]
        tls_volume = self.kms.tls_volume()
        if tls_volume:
            mounts.append(
                VolumeMount(name=tls_volume["name"], mount_path=VAULT_TLS_DIR, read_only=True)
            )

        return [
            PipelineStep(
                name=KMS_GET_KEK_STEP,
                image=self.image,
                command=FETCH_KEK_VAULT_TOKEN.command(
                    KEK_NAME=encryption_secret_name(self.claim),
                    KEY_PATH=KEY_PATH,
                ),
                env=tuple(self.kms.env_vars()),
                volume_mounts=tuple(mounts),
                resources=self.resources,
            )
        ]

    def open_step(
        self,
        name: str,
        block_path: str,
        claim: str,
        crypt_type: str,
        bridge: MountBridge,
        purge_key: bool,
    ) -> PipelineStep:
        """Open one encrypted block copied into the bridge.

        Args:
            name: Step name
            block_path: Encrypted block inside the bridge
            claim: Claim the block belongs to (names the mapping)
            crypt_type: Mapping type suffix (block/db/wal)
            bridge: Bridge of the primary claim
            purge_key: Remove the key file once the device is open
        """
        return PipelineStep(
            name=name,
            image=self.image,
            command=OPEN_ENCRYPTED_BLOCK.command(
                KEY_FILE_PATH=KEY_PATH,
                BLOCK_PATH=block_path,
                DM_NAME=dm_name(claim, crypt_type),
                DM_PATH=dm_path(claim, crypt_type),
                PURGE_KEY="true" if purge_key else "false",
            ),
            volume_mounts=(bridge.mount(), device_mapper_mount(), self.key_mount()),
            privileged=True,
            resources=self.resources,
        )

    @property
    def purges_key(self) -> bool:
        """Only a retrieved key is ours to delete; a local secret stays."""
        return self.key_source.is_remote


class KeyFetcher(Protocol):
    """Something that can obtain key material by name."""

    def fetch_key(self, kek_name: str) -> str: ...


class EncryptionKeyFlow:
    """In-process key lifecycle with guaranteed cleanup."""

    def __init__(
        self,
        key_source: KeySource,
        key_path: str | Path,
        fetcher: KeyFetcher | None = None,
        local_key_path: str | Path | None = None,
    ):
        """Initialize flow.

        Args:
            key_source: LOCAL_FILE or REMOTE_KMS
            key_path: Private path the obtained key is written to
            fetcher: Remote key client (REMOTE_KMS)
            local_key_path: Pre-provisioned key file (LOCAL_FILE)
        """
        if key_source.kind == KeySourceKind.NONE:
            raise KeyRetrievalError(message="No key source configured")
        if key_source.is_remote and fetcher is None:
            raise KeyRetrievalError(message="A remote key source requires a fetcher")
        if key_source.kind == KeySourceKind.LOCAL_FILE and local_key_path is None:
            raise KeyRetrievalError(message="A local key source requires a key file path")

        self.key_source = key_source
        self.key_path = Path(key_path)
        self.fetcher = fetcher
        self.local_key_path = Path(local_key_path) if local_key_path else None
        self.state = KeyState.NO_KEY

    def _tmp_path(self) -> Path:
        return self.key_path.with_name(f".{self.key_path.name}.tmp")

    def purge(self) -> None:
        """Remove any key material this flow may have written."""
        self.key_path.unlink(missing_ok=True)
        self._tmp_path().unlink(missing_ok=True)

    def request(self, kek_name: str) -> Path:
        """Obtain the key and write it to the private key path.

        Returns:
            The key path

        Raises:
            KeyRetrievalError: On any failure; no key file is left behind
        """
        if self.state != KeyState.NO_KEY:
            raise KeyRetrievalError(
                message=f"Key already requested (state {self.state.value})",
                data={"state": self.state.value},
            )

        self.state = KeyState.KEY_REQUESTED
        logger.debug("requesting encryption key", kek=kek_name, source=str(self.key_source))
        try:
            key = self._obtain(kek_name)
            if not key:
                raise KeyRetrievalError(message=f"Key '{kek_name}' is empty")
            self._write(key)
        except KeyRetrievalError:
            self.purge()
            self.state = KeyState.NO_KEY
            raise
        except OSError as e:
            self.purge()
            self.state = KeyState.NO_KEY
            raise KeyRetrievalError(
                message=f"Failed to write key '{kek_name}': {e}",
                data={"kek": kek_name},
            ) from e

        self.state = KeyState.KEY_OBTAINED
        logger.info("encryption key obtained", kek=kek_name, path=str(self.key_path))
        return self.key_path

    def _obtain(self, kek_name: str) -> str:
        if self.key_source.is_remote:
            assert self.fetcher is not None
            return self.fetcher.fetch_key(kek_name)

        assert self.local_key_path is not None
        try:
            return self.local_key_path.read_text()
        except OSError as e:
            raise KeyRetrievalError(
                message=f"Cannot read key file {self.local_key_path}: {e}",
                data={"path": str(self.local_key_path)},
            ) from e

    def _write(self, key: str) -> None:
        tmp = self._tmp_path()
        tmp.unlink(missing_ok=True)
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(key)
        os.replace(tmp, self.key_path)

    @contextmanager
    def consume(self) -> Iterator[Path]:
        """Hand the key path to exactly one consumer, then delete the key.

        The key is deleted whether or not the consumer succeeds.
        """
        if self.state != KeyState.KEY_OBTAINED:
            raise KeyRetrievalError(
                message=f"No key to consume (state {self.state.value})",
                data={"state": self.state.value},
            )
        try:
            yield self.key_path
        finally:
            self.purge()
            self.state = KeyState.KEY_CONSUMED
            logger.debug("encryption key consumed", path=str(self.key_path))
