"""Storage topology classification.

Maps raw daemon properties onto a small closed set of topology variants so
the pipeline builder branches on one value instead of re-deriving the same
conditions in every step constructor.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import ValidationError
from ..kms.config import KMSConfig
from .properties import CV_MODE_LVM, DaemonProperties


class ProvisioningMode(Enum):
    """Where the daemon's data lives."""

    LOCAL_DEVICE = "local-device"  # Raw host device, reached through /dev
    PERSISTENT_VOLUME = "persistent-volume"  # Block-mode PVC


class ActivationMode(Enum):
    """How the daemon process is launched."""

    DIRECT = "direct"  # ceph-osd is the container entrypoint
    VOLUME_MANAGER = "volume-manager"  # Launched through the rook helper (lvm-prepared claims)


class KeySourceKind(Enum):
    """Where the dm-crypt key comes from."""

    NONE = "none"
    LOCAL_FILE = "local-file"
    REMOTE_KMS = "remote-kms"


@dataclass(frozen=True)
class KeySource:
    """Source of the encryption key."""

    kind: KeySourceKind = KeySourceKind.NONE
    provider: str = ""
    auth_mode: str = ""

    @classmethod
    def none(cls) -> KeySource:
        return cls()

    @classmethod
    def local_file(cls) -> KeySource:
        return cls(kind=KeySourceKind.LOCAL_FILE)

    @classmethod
    def remote_kms(cls, provider: str, auth_mode: str) -> KeySource:
        return cls(kind=KeySourceKind.REMOTE_KMS, provider=provider, auth_mode=auth_mode)

    @property
    def is_remote(self) -> bool:
        return self.kind == KeySourceKind.REMOTE_KMS

    def __str__(self) -> str:
        if self.is_remote:
            return f"{self.kind.value}({self.provider}, {self.auth_mode})"
        return self.kind.value


@dataclass(frozen=True)
class StorageTopology:
    """Immutable classification of one daemon's disk layout."""

    provisioning: ProvisioningMode
    activation: ActivationMode = ActivationMode.DIRECT
    has_separate_metadata_volume: bool = False
    has_separate_wal_volume: bool = False
    encrypted: bool = False
    key_source: KeySource = KeySource()

    def __post_init__(self) -> None:
        if not self.on_pvc and (self.has_separate_metadata_volume or self.has_separate_wal_volume):
            raise ValidationError(
                message="Separate metadata/WAL volumes require persistent-volume provisioning",
            )
        if self.key_source.kind != KeySourceKind.NONE and not self.encrypted:
            raise ValidationError(message="A key source requires an encrypted topology")
        if self.encrypted and self.key_source.kind == KeySourceKind.NONE:
            raise ValidationError(message="An encrypted topology requires a key source")

    @property
    def on_pvc(self) -> bool:
        return self.provisioning == ProvisioningMode.PERSISTENT_VOLUME

    @property
    def needs_host_ipc(self) -> bool:
        """Device-open operations are synchronized through the host IPC namespace."""
        return self.encrypted or self.provisioning == ProvisioningMode.LOCAL_DEVICE

    def describe(self) -> dict[str, str | bool]:
        return {
            "provisioning": self.provisioning.value,
            "activation": self.activation.value,
            "separate_metadata": self.has_separate_metadata_volume,
            "separate_wal": self.has_separate_wal_volume,
            "encrypted": self.encrypted,
            "key_source": str(self.key_source),
        }


class TopologyClassifier:
    """Classify daemon properties into a StorageTopology."""

    def __init__(self, kms: KMSConfig | None = None):
        """Initialize classifier.

        Args:
            kms: Key-management settings; a configured provider turns
                 encrypted daemons into remote-KMS topologies.
        """
        self.kms = kms or KMSConfig()

    def classify(self, props: DaemonProperties) -> StorageTopology:
        """Classify one daemon.

        Total over validated properties.
        """
        if not props.on_pvc:
            return StorageTopology(
                provisioning=ProvisioningMode.LOCAL_DEVICE,
                activation=ActivationMode.DIRECT,
                encrypted=props.encrypted,
                key_source=self._key_source(props.encrypted),
            )

        activation = (
            ActivationMode.VOLUME_MANAGER
            if props.cv_mode == CV_MODE_LVM
            else ActivationMode.DIRECT
        )
        return StorageTopology(
            provisioning=ProvisioningMode.PERSISTENT_VOLUME,
            activation=activation,
            has_separate_metadata_volume=bool(props.metadata_pvc),
            has_separate_wal_volume=bool(props.wal_pvc),
            encrypted=props.encrypted,
            key_source=self._key_source(props.encrypted),
        )

    def _key_source(self, encrypted: bool) -> KeySource:
        if not encrypted:
            return KeySource.none()
        if self.kms.enabled:
            return KeySource.remote_kms(self.kms.provider, self.kms.auth_method)
        return KeySource.local_file()
