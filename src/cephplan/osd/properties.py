"""Raw daemon properties and their validation.

`DaemonProperties` is what the OSD preparation job reported about one OSD
plus the storage class device set it came from. Validation happens here,
before classification, so the classifier can be total.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError

CV_MODE_LVM = "lvm"
CV_MODE_RAW = "raw"
CV_MODES = (CV_MODE_LVM, CV_MODE_RAW)

# Minimum pod memory in MB, below which the daemon is known to misbehave
OSD_MINIMUM_MEMORY_MB = 2048

_QUANTITY_RE = re.compile(r"^([0-9.]+)([a-zA-Z]*)$")
_QUANTITY_UNITS = {
    "": 1,
    "k": 1000,
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
}


def parse_quantity(value: str | int | float) -> int:
    """Parse a Kubernetes memory quantity ("4Gi", "512M", "1073741824") into bytes.

    Raises:
        ValidationError: If the quantity is not understood
    """
    if isinstance(value, (int, float)):
        return int(value)
    match = _QUANTITY_RE.match(str(value).strip())
    if not match or match.group(2) not in _QUANTITY_UNITS:
        raise ValidationError(message=f"Invalid resource quantity: {value!r}")
    return int(float(match.group(1)) * _QUANTITY_UNITS[match.group(2)])


def check_pod_memory(resources: dict[str, Any] | None, minimum_mb: int, daemon: str) -> None:
    """Reject memory limits/requests below the daemon's minimum.

    Unset memory is allowed.

    Raises:
        ValidationError: If a memory limit or request is too small
    """
    if not resources:
        return
    minimum = minimum_mb * 1024 * 1024
    for section in ("limits", "requests"):
        memory = (resources.get(section) or {}).get("memory")
        if memory is None:
            continue
        if parse_quantity(memory) < minimum:
            raise ValidationError(
                message=(
                    f"{daemon}: memory {section[:-1]} {memory} is below "
                    f"the minimum of {minimum_mb}Mi"
                ),
                data={"daemon": daemon, section: memory, "minimum_mb": minimum_mb},
            )


@dataclass
class DaemonProperties:
    """Properties of one OSD daemon."""

    osd_id: int
    uuid: str = ""
    cv_mode: str = CV_MODE_LVM
    block_path: str = ""
    lv_backed_pv: bool = False
    location: str = ""
    topology_affinity: str = ""
    pvc: str = ""
    metadata_pvc: str = ""
    wal_pvc: str = ""
    metadata_device: str = ""
    wal_device: str = ""
    encrypted: bool = False
    pvc_size: str = ""
    portable: bool = False
    crush_hostname: str = ""
    device_set_name: str = ""
    resources: dict[str, Any] = field(default_factory=dict)
    tune_slow_device_class: bool = False
    tune_fast_device_class: bool = False
    scheduler_name: str = ""

    @property
    def on_pvc(self) -> bool:
        return bool(self.pvc)

    @property
    def on_pvc_with_metadata(self) -> bool:
        return bool(self.pvc and self.metadata_pvc)

    @property
    def on_pvc_with_wal(self) -> bool:
        return bool(self.pvc and self.wal_pvc)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DaemonProperties:
        """Build validated properties from a mapping (e.g. parsed YAML).

        Raises:
            ValidationError: If the properties cannot describe a valid OSD
        """
        if not isinstance(data, dict):
            raise ValidationError(message="OSD properties must be a mapping")

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(
                message=f"Unknown OSD properties: {', '.join(unknown)}",
                data={"unknown": unknown},
            )
        if "osd_id" not in data:
            raise ValidationError(message="OSD properties require 'osd_id'")

        try:
            osd_id = int(data["osd_id"])
        except (TypeError, ValueError):
            raise ValidationError(message=f"Invalid osd_id: {data['osd_id']!r}")

        props = cls(**{**data, "osd_id": osd_id})
        # An empty mode means the OSD predates mode tracking; those were all lvm
        if not props.cv_mode:
            props.cv_mode = CV_MODE_LVM
        props.resources = dict(props.resources or {})
        props.validate()
        return props

    def validate(self) -> None:
        """Check the properties for combinations no topology can represent.

        Raises:
            ValidationError: On the first problem found
        """
        if self.osd_id < 0:
            raise ValidationError(message=f"osd_id must not be negative, got {self.osd_id}")
        if self.cv_mode not in CV_MODES:
            raise ValidationError(
                message=f"osd.{self.osd_id}: unknown cv_mode '{self.cv_mode}'",
                data={"cv_mode": self.cv_mode},
            )
        if (self.metadata_pvc or self.wal_pvc) and not self.pvc:
            raise ValidationError(
                message=f"osd.{self.osd_id}: metadata/wal claims require a primary claim",
            )
        if self.encrypted and not self.pvc and self.cv_mode == CV_MODE_RAW:
            raise ValidationError(
                message=f"osd.{self.osd_id}: raw encrypted OSDs are only supported on a claim",
            )
        if not self.portable and not self.crush_hostname:
            raise ValidationError(
                message=f"osd.{self.osd_id}: crush_hostname is required for non-portable OSDs",
            )
        if self.on_pvc and not self.block_path:
            self.block_path = f"/{self.pvc}"
        check_pod_memory(self.resources, OSD_MINIMUM_MEMORY_MB, f"osd.{self.osd_id}")
