"""Deployment reconciliation.

Converges one ExecutionPlan against live state:

    ABSENT              -> create
    PRESENT_CURRENT     -> nothing
    PRESENT_STALE       -> update in place
    PRESENT_CONFLICTING -> delete, then create (at most once per call)

An update the API rejects as Invalid (an immutable field would change) is
treated as PRESENT_CONFLICTING. Singleton daemon classes then get a cleanup
pass that removes every instance but the canonical one (ordinal 0) along
with its credential. Cleanup failures are reported as warnings and never
fail the reconcile.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ApplyError, CleanupWarning, RecreateFailure
from ..osd.plan import SPEC_HASH_ANNOTATION, ExecutionPlan
from ..shared.logging import get_logger
from .cluster import ClusterClient
from .credentials import CredentialClient
from .naming import name_to_index

logger = get_logger(__name__)

FOREGROUND_PROPAGATION = "Foreground"


class ReconcileState(Enum):
    """Live state of one identity relative to its desired plan."""

    ABSENT = "absent"
    PRESENT_CURRENT = "present-current"
    PRESENT_STALE = "present-stale"
    PRESENT_CONFLICTING = "present-conflicting"


class ReconcileAction(Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    RECREATED = "recreated"


@dataclass
class DeploymentRecord:
    """The reconciler's view of one live deployment."""

    identity: str
    name: str
    exists: bool
    spec_hash: str = ""
    selector_immutable_fields_match: bool = True

    @classmethod
    def observe(
        cls,
        identity: str,
        desired: dict[str, Any],
        live: dict[str, Any] | None,
    ) -> DeploymentRecord:
        """Compare a live object (None if absent) with the desired one."""
        name = desired["metadata"]["name"]
        if live is None:
            return cls(identity=identity, name=name, exists=False)

        annotations = live.get("metadata", {}).get("annotations") or {}
        return cls(
            identity=identity,
            name=name,
            exists=True,
            spec_hash=annotations.get(SPEC_HASH_ANNOTATION, ""),
            selector_immutable_fields_match=_selector(live) == _selector(desired),
        )

    def state(self, desired_hash: str) -> ReconcileState:
        if not self.exists:
            return ReconcileState.ABSENT
        if not self.selector_immutable_fields_match:
            return ReconcileState.PRESENT_CONFLICTING
        if self.spec_hash == desired_hash:
            return ReconcileState.PRESENT_CURRENT
        return ReconcileState.PRESENT_STALE


def _selector(obj: dict[str, Any]) -> dict[str, Any]:
    return (obj.get("spec", {}).get("selector") or {}).get("matchLabels") or {}


@dataclass(frozen=True)
class DaemonClass:
    """A kind of daemon the reconciler manages.

    Singleton classes keep exactly one canonical instance; their instances
    carry their ordinal name in `instance_label` and own the credential
    `<credential_prefix><name>`.
    """

    app: str
    singleton: bool = False
    instance_label: str = ""
    credential_prefix: str = ""

    @property
    def label_selector(self) -> str:
        return f"app={self.app}"

    def credential_entity(self, instance: str) -> str:
        return f"{self.credential_prefix}{instance}"


@dataclass
class CleanupResult:
    """Outcome of a singleton cleanup pass."""

    deleted: list[str] = field(default_factory=list)
    credentials_removed: list[str] = field(default_factory=list)
    warnings: list[CleanupWarning] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Outcome of one reconcile call."""

    identity: str
    name: str
    initial_state: ReconcileState
    action: ReconcileAction
    spec_hash: str
    cleanup: CleanupResult = field(default_factory=CleanupResult)

    @property
    def warnings(self) -> list[CleanupWarning]:
        return self.cleanup.warnings

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "initial_state": self.initial_state.value,
            "action": self.action.value,
            "spec_hash": self.spec_hash,
            "deleted": list(self.cleanup.deleted),
            "credentials_removed": list(self.cleanup.credentials_removed),
            "warnings": [w.to_dict() for w in self.cleanup.warnings],
        }


class IdentityLocks:
    """One lock per daemon identity.

    Two reconciles for the same identity never interleave; different
    identities proceed in parallel.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # Never pruned; bounded by the number of daemon identities in the cluster
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, identity: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = self._locks[identity] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, identity: str) -> Iterator[None]:
        with self.lock_for(identity):
            yield


class DeploymentReconciler:
    """Converge live deployments to execution plans."""

    def __init__(
        self,
        cluster: ClusterClient,
        credentials: CredentialClient | None = None,
        locks: IdentityLocks | None = None,
    ):
        """Initialize reconciler.

        Args:
            cluster: Deployment API
            credentials: Credential API, needed for singleton cleanup
            locks: Shared per-identity locks (one set per process)
        """
        self.cluster = cluster
        self.credentials = credentials
        self.locks = locks or IdentityLocks()

    def reconcile(self, plan: ExecutionPlan, daemon_class: DaemonClass) -> ReconcileResult:
        """Converge one plan, then clean up if the class is a singleton.

        Raises:
            ApplyError: A create/update/delete call failed (retryable)
            RecreateFailure: Delete succeeded but the recreate failed
        """
        desired = plan.to_deployment()
        with self.locks.hold(f"{daemon_class.app}/{plan.identity}"):
            result = self._converge(plan.identity, desired)
            if daemon_class.singleton:
                result.cleanup = self.remove_extra_instances(daemon_class)
        return result

    def _observe(self, identity: str, desired: dict[str, Any]) -> DeploymentRecord:
        live = self.cluster.get(desired["metadata"]["name"])
        return DeploymentRecord.observe(identity, desired, live)

    def _converge(self, identity: str, desired: dict[str, Any]) -> ReconcileResult:
        name = desired["metadata"]["name"]
        desired_hash = desired["metadata"]["annotations"][SPEC_HASH_ANNOTATION]
        initial = state = self._observe(identity, desired).state(desired_hash)
        log = logger.bind(identity=identity, deployment=name)
        log.debug("observed deployment", state=state.value)

        def done(action: ReconcileAction) -> ReconcileResult:
            log.info("deployment reconciled", state=initial.value, action=action.value)
            return ReconcileResult(
                identity=identity,
                name=name,
                initial_state=initial,
                action=action,
                spec_hash=desired_hash,
            )

        if state == ReconcileState.ABSENT:
            try:
                self.cluster.create(desired)
                return done(ReconcileAction.CREATED)
            except ApplyError as e:
                if not e.is_already_exists:
                    raise
                # Created by someone else since we looked; look once more
                log.info("deployment already exists, re-reading live state")
                state = self._observe(identity, desired).state(desired_hash)
                if state == ReconcileState.ABSENT:
                    raise
                log.debug("observed deployment", state=state.value)

        if state == ReconcileState.PRESENT_CURRENT:
            return done(ReconcileAction.UNCHANGED)

        if state == ReconcileState.PRESENT_STALE:
            try:
                self.cluster.update(desired)
                return done(ReconcileAction.UPDATED)
            except ApplyError as e:
                if not e.is_rejection:
                    raise
                log.info("update rejected, falling back to delete-and-recreate", error=e.message)

        self._recreate(name, desired)
        return done(ReconcileAction.RECREATED)

    def _recreate(self, name: str, desired: dict[str, Any]) -> None:
        """Delete the live deployment and create it again, once."""
        try:
            self.cluster.delete(name)
        except ApplyError as e:
            if not e.is_not_found:
                raise
        logger.debug("deployment deleted for recreate", deployment=name)

        try:
            self.cluster.create(desired)
        except ApplyError as e:
            raise RecreateFailure(
                message=f"Failed to recreate deployment {name} after deleting it: {e.message}",
                data={
                    "deployment": name,
                    "namespace": desired["metadata"].get("namespace", ""),
                    "reason": e.reason,
                    "deleted": True,
                },
            ) from e

    def remove_extra_instances(self, daemon_class: DaemonClass) -> CleanupResult:
        """Delete every instance of a singleton class except ordinal 0.

        Instances without the ordinal label, or with a label that is not an
        ordinal name, are left alone. Nothing here raises; failures come
        back as warnings.
        """
        result = CleanupResult()
        try:
            items = self.cluster.list(daemon_class.label_selector)
        except ApplyError as e:
            self._warn(result, f"Failed to list {daemon_class.app} deployments: {e.message}")
            return result

        if len(items) <= 1:
            return result

        for item in items:
            metadata = item.get("metadata", {})
            name = metadata.get("name", "")
            instance = (metadata.get("labels") or {}).get(daemon_class.instance_label)
            if instance is None:
                logger.warning("unrecognized instance", app=daemon_class.app, deployment=name)
                continue
            try:
                index = name_to_index(instance)
            except ValueError:
                logger.warning(
                    "unrecognized instance name",
                    app=daemon_class.app,
                    deployment=name,
                    instance=instance,
                )
                continue
            if index == 0:
                continue

            logger.info("removing legacy instance", app=daemon_class.app, instance=instance)
            try:
                self.cluster.delete(
                    name, grace_period_seconds=0, propagation=FOREGROUND_PROPAGATION
                )
                result.deleted.append(name)
            except ApplyError as e:
                self._warn(result, f"Failed to delete {name}: {e.message}", deployment=name)

            entity = daemon_class.credential_entity(instance)
            if self.credentials is None:
                self._warn(result, f"No credential client to delete {entity}", entity=entity)
                continue
            try:
                self.credentials.delete_credential(entity)
                result.credentials_removed.append(entity)
            except ApplyError as e:
                self._warn(
                    result, f"Failed to delete credential {entity}: {e.message}", entity=entity
                )

        return result

    def _warn(self, result: CleanupResult, message: str, **data: str) -> None:
        warning = CleanupWarning(message=message, data=data)
        logger.warning("cleanup failed", error=message, **data)
        result.warnings.append(warning)
