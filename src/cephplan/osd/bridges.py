"""Shared mount points ("bridges") between preparatory steps.

Init containers do not share a filesystem namespace, so data is passed
through a hostPath directory mounted at the OSD data dir. A bridge is keyed
by the identity of the underlying claim (or device), never by the step
that uses it: every step touching the same claim gets the same bridge.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from .plan import VolumeMount

BRIDGE_SUFFIX = "-bridge"

# Kubernetes volume names are DNS-1123 labels
MAX_VOLUME_NAME_LENGTH = 63
_HASH_LENGTH = 8
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")


def bridge_name(identity: str) -> str:
    """Deterministic volume name for a claim or device identity.

    A claim name that is already a valid label maps onto itself:
    "set1-data-0" -> "set1-data-0-bridge". Any identity that had to be
    rewritten ("/dev/sdb", "set1.data-0") or shortened carries a short hash of
    the original, so distinct identities never collide.
    """
    base = _INVALID_NAME_CHARS.sub("-", identity.lower()).strip("-") or "volume"
    name = f"{base}{BRIDGE_SUFFIX}"
    if base == identity and len(name) <= MAX_VOLUME_NAME_LENGTH:
        return name

    digest = hashlib.sha1(identity.encode()).hexdigest()[:_HASH_LENGTH]
    keep = MAX_VOLUME_NAME_LENGTH - len(BRIDGE_SUFFIX) - _HASH_LENGTH - 1
    return f"{base[:keep].rstrip('-')}-{digest}{BRIDGE_SUFFIX}"


def bridge_host_dir(identity: str) -> str:
    """Host directory component for an identity ("/dev/sdb" -> "_dev_sdb")."""
    return identity.replace("/", "_")


@dataclass(frozen=True)
class MountBridge:
    """A hostPath directory shared by every step working on one claim."""

    identity: str
    name: str
    mount_path: str
    host_path: str

    def volume(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "hostPath": {"path": self.host_path, "type": "DirectoryOrCreate"},
        }

    def mount(self) -> VolumeMount:
        return VolumeMount(name=self.name, mount_path=self.mount_path)


class VolumeBindingResolver:
    """Hand out bridges, one per identity, for a single plan build."""

    def __init__(self, mount_path: str, host_root: str):
        """Initialize resolver.

        Args:
            mount_path: In-container path every bridge is mounted at
                        (the OSD data dir)
            host_root: Host directory the bridge directories live under
        """
        self.mount_path = mount_path
        self.host_root = host_root
        self._bridges: dict[str, MountBridge] = {}

    def bridge_for(self, identity: str) -> MountBridge:
        """Get the bridge for a claim or device identity.

        Repeated calls with the same identity return the identical bridge.
        """
        if not identity:
            raise ValueError("bridge identity must not be empty")

        bridge = self._bridges.get(identity)
        if bridge is None:
            bridge = MountBridge(
                identity=identity,
                name=bridge_name(identity),
                mount_path=self.mount_path,
                host_path=str(PurePosixPath(self.host_root) / bridge_host_dir(identity)),
            )
            self._bridges[identity] = bridge
        return bridge

    def bridges(self) -> list[MountBridge]:
        """Bridges handed out so far, in first-use order."""
        return list(self._bridges.values())
