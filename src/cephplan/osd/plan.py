"""Execution plan data model.

A plan is built once per reconcile pass and never mutated afterwards:
ordered preparatory steps (init containers), one terminal daemon
container, and the pod-level fields. `ExecutionPlan.to_deployment()`
renders it into the scheduler's Deployment object.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

SPEC_HASH_ANNOTATION = "cephplan.io/spec-hash"


@dataclass(frozen=True)
class VolumeMount:
    """A volume mounted into a container."""

    name: str
    mount_path: str
    read_only: bool = False
    sub_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        mount: dict[str, Any] = {"name": self.name, "mountPath": self.mount_path}
        if self.read_only:
            mount["readOnly"] = True
        if self.sub_path:
            mount["subPath"] = self.sub_path
        return mount


@dataclass(frozen=True)
class VolumeDevice:
    """A block-mode volume exposed as a device node."""

    name: str
    device_path: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "devicePath": self.device_path}


@dataclass(frozen=True)
class PipelineStep:
    """One container of the plan: a preparatory step or the daemon itself."""

    name: str
    image: str
    command: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    volume_mounts: tuple[VolumeMount, ...] = ()
    volume_devices: tuple[VolumeDevice, ...] = ()
    env: tuple[dict[str, Any], ...] = ()
    privileged: bool = False
    run_as_user: int | None = None
    read_only_root_filesystem: bool | None = None
    resources: dict[str, Any] = field(default_factory=dict)
    working_dir: str = ""
    liveness_probe: dict[str, Any] | None = None

    def mount_names(self) -> list[str]:
        return [m.name for m in self.volume_mounts]

    def mount_for(self, name: str) -> VolumeMount | None:
        return next((m for m in self.volume_mounts if m.name == name), None)

    def security_context(self) -> dict[str, Any]:
        context: dict[str, Any] = {}
        if self.privileged:
            context["privileged"] = True
        if self.run_as_user is not None:
            context["runAsUser"] = self.run_as_user
        if self.read_only_root_filesystem is not None:
            context["readOnlyRootFilesystem"] = self.read_only_root_filesystem
        return context

    def to_container(self) -> dict[str, Any]:
        """Render as a Kubernetes container object."""
        container: dict[str, Any] = {"name": self.name, "image": self.image}
        if self.command:
            container["command"] = list(self.command)
        if self.args:
            container["args"] = list(self.args)
        if self.env:
            container["env"] = [dict(e) for e in dedupe_env(self.env)]
        if self.volume_mounts:
            container["volumeMounts"] = [m.to_dict() for m in self.volume_mounts]
        if self.volume_devices:
            container["volumeDevices"] = [d.to_dict() for d in self.volume_devices]
        if self.resources:
            container["resources"] = self.resources
        security_context = self.security_context()
        if security_context:
            container["securityContext"] = security_context
        if self.working_dir:
            container["workingDir"] = self.working_dir
        if self.liveness_probe:
            container["livenessProbe"] = self.liveness_probe
        return container


def dedupe_env(env: tuple[dict[str, Any], ...] | list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop repeated environment variables, keeping the first definition."""
    seen: set[str] = set()
    result = []
    for var in env:
        if var["name"] in seen:
            continue
        seen.add(var["name"])
        result.append(var)
    return result


@dataclass(frozen=True)
class ExecutionPlan:
    """Everything one daemon needs to run, in order."""

    identity: str
    name: str
    namespace: str
    steps: tuple[PipelineStep, ...]
    daemon: PipelineStep
    volumes: tuple[dict[str, Any], ...]
    labels: dict[str, str] = field(default_factory=dict)
    selector: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    host_pid: bool = False
    host_ipc: bool = False
    host_network: bool = False
    restart_policy: str = "Always"
    service_account: str = ""
    priority_class_name: str = ""
    scheduler_name: str = ""
    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: tuple[dict[str, Any], ...] = ()
    affinity: dict[str, Any] = field(default_factory=dict)
    strategy: str = "Recreate"
    replicas: int = 1

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def step(self, name: str) -> PipelineStep:
        """Look up a step (or the daemon container) by name.

        Raises:
            KeyError: If no container has that name
        """
        for step in (*self.steps, self.daemon):
            if step.name == name:
                return step
        raise KeyError(name)

    def volume(self, name: str) -> dict[str, Any] | None:
        return next((v for v in self.volumes if v["name"] == name), None)

    def pod_spec(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "restartPolicy": self.restart_policy,
            "hostPID": self.host_pid,
            "hostIPC": self.host_ipc,
            "hostNetwork": self.host_network,
            "initContainers": [step.to_container() for step in self.steps],
            "containers": [self.daemon.to_container()],
            "volumes": [dict(v) for v in self.volumes],
        }
        if self.host_network:
            spec["dnsPolicy"] = "ClusterFirstWithHostNet"
        if self.service_account:
            spec["serviceAccountName"] = self.service_account
        if self.priority_class_name:
            spec["priorityClassName"] = self.priority_class_name
        if self.scheduler_name:
            spec["schedulerName"] = self.scheduler_name
        if self.node_selector:
            spec["nodeSelector"] = dict(self.node_selector)
        if self.tolerations:
            spec["tolerations"] = [dict(t) for t in self.tolerations]
        if self.affinity:
            spec["affinity"] = self.affinity
        return spec

    def to_deployment(self) -> dict[str, Any]:
        """Render as an apps/v1 Deployment, stamped with its spec hash."""
        deployment: dict[str, Any] = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
            },
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": dict(self.selector)},
                "strategy": {"type": self.strategy},
                "template": {
                    "metadata": {
                        "name": self.name,
                        "labels": dict(self.labels),
                        "annotations": dict(self.annotations),
                    },
                    "spec": self.pod_spec(),
                },
            },
        }
        deployment["metadata"]["annotations"][SPEC_HASH_ANNOTATION] = compute_spec_hash(
            deployment
        )
        return deployment


def compute_spec_hash(deployment: dict[str, Any]) -> str:
    """Content hash of a rendered deployment, ignoring its own hash annotation."""
    metadata = dict(deployment.get("metadata", {}))
    annotations = {
        k: v for k, v in (metadata.get("annotations") or {}).items() if k != SPEC_HASH_ANNOTATION
    }
    hashed = {
        "metadata": {
            "name": metadata.get("name"),
            "namespace": metadata.get("namespace"),
            "labels": metadata.get("labels") or {},
            "annotations": annotations,
        },
        "spec": deployment.get("spec", {}),
    }
    canonical = json.dumps(hashed, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
