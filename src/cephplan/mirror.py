"""rbd-mirror daemon plan.

rbd-mirror runs as a singleton: one canonical deployment named after
ordinal 0 ("rook-ceph-rbd-mirror-a"). Older releases ran several numbered
instances; the reconciler removes those through RBD_MIRROR_CLASS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config import PlannerConfig
from .errors import ValidationError
from .osd.pipeline import (
    CLUSTER_LABEL,
    CONFIG_OVERRIDE_VOLUME,
    CRASH_VOLUME,
    LOG_VOLUME,
    LOGGING_FLAGS,
)
from .osd.plan import ExecutionPlan, PipelineStep, VolumeMount
from .osd.properties import check_pod_memory
from .reconcile.naming import index_to_name
from .reconcile.reconciler import DaemonClass
from .shared.paths import CEPH_CRASH_DIR, CEPH_LOG_DIR, ETC_CEPH_DIR, cluster_host_dir

APP_NAME = "rook-ceph-rbd-mirror"
DAEMON_TYPE = "rbd-mirror"

# Minimum pod memory in MB
RBD_MIRROR_MINIMUM_MEMORY_MB = 512

KEYRING_DIR = "/etc/ceph/keyring-store"

RBD_MIRROR_CLASS = DaemonClass(
    app=APP_NAME,
    singleton=True,
    instance_label=DAEMON_TYPE,
    credential_prefix=f"client.{DAEMON_TYPE}.",
)


@dataclass
class MirrorSpec:
    """Desired rbd-mirror settings."""

    resources: dict[str, Any] = field(default_factory=dict)
    priority_class_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MirrorSpec:
        """Build a spec from a mapping.

        Raises:
            ValidationError: On unknown keys or too little memory
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError(message="rbd-mirror spec must be a mapping")
        unknown = sorted(set(data) - set(cls.__dataclass_fields__))
        if unknown:
            raise ValidationError(
                message=f"Unknown rbd-mirror settings: {', '.join(unknown)}",
                data={"unknown": unknown},
            )
        spec = cls(**data)
        spec.validate()
        return spec

    def validate(self) -> None:
        check_pod_memory(self.resources, RBD_MIRROR_MINIMUM_MEMORY_MB, DAEMON_TYPE)


def keyring_secret_name(resource_name: str) -> str:
    return f"{resource_name}-keyring"


class MirrorPlanBuilder:
    """Build the plan of the canonical rbd-mirror daemon."""

    def __init__(self, config: PlannerConfig):
        self.config = config

    def build(self, spec: MirrorSpec) -> ExecutionPlan:
        spec.validate()

        daemon_id = index_to_name(0)
        name = f"{APP_NAME}-{daemon_id}"
        namespace = self.config.namespace
        host_dir = cluster_host_dir(self.config.data_dir_host_path, namespace)

        mounts = (
            VolumeMount(name=CONFIG_OVERRIDE_VOLUME, mount_path=ETC_CEPH_DIR, read_only=True),
            VolumeMount(name="keyring", mount_path=KEYRING_DIR, read_only=True),
            VolumeMount(name=LOG_VOLUME, mount_path=CEPH_LOG_DIR),
            VolumeMount(name=CRASH_VOLUME, mount_path=CEPH_CRASH_DIR),
        )
        volumes = (
            {
                "name": CONFIG_OVERRIDE_VOLUME,
                "configMap": {
                    "name": CONFIG_OVERRIDE_VOLUME,
                    "items": [{"key": "config", "path": "ceph.conf", "mode": 0o444}],
                },
            },
            {"name": "keyring", "secret": {"secretName": keyring_secret_name(name)}},
            {"name": LOG_VOLUME, "hostPath": {"path": f"{host_dir}/log"}},
            {"name": CRASH_VOLUME, "hostPath": {"path": f"{host_dir}/crash"}},
        )
        security = {"privileged": True, "run_as_user": 0}

        chown = PipelineStep(
            name="chown-container-data-dirs",
            image=self.config.ceph_image,
            command=("chown",),
            args=("--verbose", "--recursive", "ceph:ceph", CEPH_LOG_DIR, CEPH_CRASH_DIR),
            volume_mounts=mounts,
            resources=spec.resources,
            **security,
        )
        daemon = PipelineStep(
            name=DAEMON_TYPE,
            image=self.config.ceph_image,
            command=("rbd-mirror",),
            args=(
                "--foreground",
                "--fsid",
                self.config.fsid,
                "--keyring",
                f"{KEYRING_DIR}/keyring",
                "--name",
                f"client.{DAEMON_TYPE}.{daemon_id}",
                "--setuser",
                "ceph",
                "--setgroup",
                "ceph",
                *LOGGING_FLAGS,
            ),
            env=(
                {
                    "name": "ROOK_CEPH_MON_HOST",
                    "valueFrom": {"secretKeyRef": {"name": "rook-ceph-config", "key": "mon_host"}},
                },
                {"name": "CEPH_ARGS", "value": "-m $(ROOK_CEPH_MON_HOST)"},
            ),
            volume_mounts=mounts,
            resources=spec.resources,
            working_dir=CEPH_LOG_DIR,
            **security,
        )

        selector = {"app": APP_NAME, CLUSTER_LABEL: namespace, DAEMON_TYPE: daemon_id}
        labels = {
            **spec.labels,
            **selector,
            "ceph_daemon_type": DAEMON_TYPE,
            "ceph_daemon_id": daemon_id,
        }
        return ExecutionPlan(
            identity=daemon_id,
            name=name,
            namespace=namespace,
            steps=(chown,),
            daemon=daemon,
            volumes=volumes,
            labels=labels,
            selector=selector,
            annotations=dict(spec.annotations),
            host_pid=self.config.host_pid,
            host_network=self.config.host_network,
            priority_class_name=spec.priority_class_name or self.config.priority_class_name,
        )
