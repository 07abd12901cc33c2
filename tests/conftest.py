"""Shared test fixtures for cephplan tests.

- FakeCluster: in-memory deployment API with kubectl-like failure reasons
- FakeCredentials: records credential deletions
- make_props: builds validated OSD properties with sensible defaults
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

import pytest

from cephplan.config import PlannerConfig
from cephplan.errors import (
    REASON_ALREADY_EXISTS,
    REASON_INVALID,
    REASON_NOT_FOUND,
    ApplyError,
)
from cephplan.kms import KMSConfig
from cephplan.osd import DaemonProperties

TEST_FSID = "b6ed0b4e-7e7b-4e31-9a3b-7f5b3e0c1a10"
TEST_UUID = "9f1c4b6e-2a0b-4a8e-8d35-0d6f8b9e7c21"

# =============================================================================
# Fake cluster
# =============================================================================


@dataclass
class FakeCluster:
    """In-memory deployments keyed by name."""

    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    delete_options: list[dict[str, Any]] = field(default_factory=list)
    # action -> errors raised by the next calls of that action
    failures: dict[str, list[ApplyError]] = field(default_factory=dict)
    # Number of initial get() calls that miss an existing object
    stale_reads: int = 0
    reject_updates: bool = False

    def fail_next(self, action: str, error: ApplyError) -> None:
        self.failures.setdefault(action, []).append(error)

    def _maybe_fail(self, action: str) -> None:
        pending = self.failures.get(action)
        if pending:
            raise pending.pop(0)

    def count(self, action: str) -> int:
        return sum(1 for a, _ in self.calls if a == action)

    def add(self, obj: dict[str, Any]) -> None:
        self.objects[obj["metadata"]["name"]] = copy.deepcopy(obj)

    def get(self, name: str) -> dict[str, Any] | None:
        self.calls.append(("get", name))
        self._maybe_fail("get")
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return None
        obj = self.objects.get(name)
        return copy.deepcopy(obj) if obj is not None else None

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        name = obj["metadata"]["name"]
        self.calls.append(("create", name))
        self._maybe_fail("create")
        if name in self.objects:
            raise ApplyError(message=f"{name} already exists", reason=REASON_ALREADY_EXISTS)
        self.add(obj)
        return copy.deepcopy(obj)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        name = obj["metadata"]["name"]
        self.calls.append(("update", name))
        self._maybe_fail("update")
        live = self.objects.get(name)
        if live is None:
            raise ApplyError(message=f"{name} not found", reason=REASON_NOT_FOUND)
        if self.reject_updates or live["spec"]["selector"] != obj["spec"]["selector"]:
            raise ApplyError(message="field is immutable", reason=REASON_INVALID)
        self.add(obj)
        return copy.deepcopy(obj)

    def delete(
        self,
        name: str,
        grace_period_seconds: int | None = None,
        propagation: str | None = None,
    ) -> None:
        self.calls.append(("delete", name))
        self.delete_options.append(
            {"name": name, "grace_period_seconds": grace_period_seconds, "propagation": propagation}
        )
        self._maybe_fail("delete")
        if name not in self.objects:
            raise ApplyError(message=f"{name} not found", reason=REASON_NOT_FOUND)
        del self.objects[name]

    def list(self, label_selector: str) -> list[dict[str, Any]]:
        self.calls.append(("list", label_selector))
        self._maybe_fail("list")
        key, _, value = label_selector.partition("=")
        return [
            copy.deepcopy(obj)
            for obj in self.objects.values()
            if (obj["metadata"].get("labels") or {}).get(key) == value
        ]


@dataclass
class FakeCredentials:
    """Records deleted credentials; entities in `failing` raise."""

    deleted: list[str] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    def delete_credential(self, entity: str) -> None:
        if entity in self.failing:
            raise ApplyError(message=f"failed to delete {entity}")
        self.deleted.append(entity)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fake_credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def planner_config() -> PlannerConfig:
    """Planner config with a fixed fsid and no KMS."""
    return PlannerConfig(fsid=TEST_FSID)


@pytest.fixture
def vault_kms() -> KMSConfig:
    return KMSConfig(
        provider="vault",
        address="https://vault.example:8200",
        backend_path="rook",
        token_secret="rook-vault-token",
    )


@pytest.fixture
def kms_config(vault_kms) -> PlannerConfig:
    """Planner config with Vault token auth."""
    return PlannerConfig(fsid=TEST_FSID, kms=vault_kms)


@pytest.fixture
def make_props():
    """Factory for validated OSD properties.

    With `pvc=True` the OSD sits on claim "set1-data-0"; other keyword
    arguments override individual properties.
    """

    def _make(pvc: bool = False, **overrides: Any) -> DaemonProperties:
        data: dict[str, Any] = {
            "osd_id": 0,
            "uuid": TEST_UUID,
            "crush_hostname": "node-1",
            "location": "root=default host=node-1",
        }
        if pvc:
            data.update(
                {
                    "pvc": "set1-data-0",
                    "device_set_name": "set1",
                    "pvc_size": "10Gi",
                    "cv_mode": "raw",
                }
            )
        else:
            data["block_path"] = "/dev/sdb"
        data.update(overrides)
        return DaemonProperties.from_dict(data)

    return _make
