"""Container pipeline synthesis.

Turns one classified OSD into an ExecutionPlan. Steps are appended in a
fixed phase order:

1. config-init              rendered config (volume-manager launch only)
2. copy-bins                tini and rook staged into /rook (volume-manager launch only)
3. blkdevmapper             claim device copied into the bridge
4. blkdevmapper-metadata/-wal
5. key retrieval, encryption-open*, blkdevmapper-*encryption,
   encrypted-block-status, expand-encrypted-bluefs      (encrypted claims)
6. activate, expand-bluefs  (activate only on local devices)
7. chown-container-data-dirs
8. the osd container

Every step that touches a claim mounts the bridge of the primary claim at
the OSD data dir, so all of them agree on where `block`, `block.db` and
`block.wal` live.
"""

from __future__ import annotations

from typing import Any

from ..config import PlannerConfig
from ..errors import PlanBuildError
from ..shared.logging import get_logger
from ..shared.paths import (
    CEPH_CRASH_DIR,
    CEPH_LOG_DIR,
    ETC_CEPH_DIR,
    ROOK_BINARIES_DIR,
    ROOK_CONFIG_DIR,
    UDEV_DIR,
    cluster_host_dir,
    osd_data_dir,
)
from .bridges import MountBridge, VolumeBindingResolver
from .keyflow import KeyStepFactory, device_mapper_mount, device_mapper_volume, dm_name, dm_path
from .plan import ExecutionPlan, PipelineStep, VolumeDevice, VolumeMount
from .properties import DaemonProperties
from .scripts import ACTIVATE_LOCAL_DEVICE, DEVICE_COPY
from .topology import ActivationMode, StorageTopology

logger = get_logger(__name__)

APP_NAME = "rook-ceph-osd"
DAEMON_CONTAINER = "osd"

# Step names
CONFIG_INIT_STEP = "config-init"
COPY_BINS_STEP = "copy-bins"
BLOCK_COPY_STEP = "blkdevmapper"
METADATA_COPY_STEP = "blkdevmapper-metadata"
WAL_COPY_STEP = "blkdevmapper-wal"
OPEN_BLOCK_STEP = "encryption-open"
OPEN_METADATA_STEP = "encryption-open-metadata"
OPEN_WAL_STEP = "encryption-open-wal"
ENCRYPTED_BLOCK_COPY_STEP = "blkdevmapper-encryption"
ENCRYPTED_METADATA_COPY_STEP = "blkdevmapper-metadata-encryption"
ENCRYPTED_WAL_COPY_STEP = "blkdevmapper-wal-encryption"
ENCRYPTED_STATUS_STEP = "encrypted-block-status"
ENCRYPTED_EXPAND_STEP = "expand-encrypted-bluefs"
ACTIVATE_STEP = "activate"
EXPAND_STEP = "expand-bluefs"
CHOWN_STEP = "chown-container-data-dirs"

# Bluestore file names inside the data dir, and their dm-crypt suffixes
BLOCK_NAME = "block"
METADATA_NAME = "block.db"
WAL_NAME = "block.wal"
DMCRYPT_BLOCK = "block-dmcrypt"
DMCRYPT_METADATA = "db-dmcrypt"
DMCRYPT_WAL = "wal-dmcrypt"

# Volume names
CONFIG_OVERRIDE_VOLUME = "rook-config-override"
ROOK_CONFIG_VOLUME = "rook-config"
LOG_VOLUME = "rook-ceph-log"
CRASH_VOLUME = "rook-ceph-crash"
UDEV_VOLUME = "run-udev"
DEVICES_VOLUME = "devices"
ROOK_BINARIES_VOLUME = "rook-binaries"

# Labels
APP_LABEL = "app"
CLUSTER_LABEL = "rook_cluster"
OSD_ID_LABEL = "ceph-osd-id"
PVC_LABEL = "ceph.rook.io/pvc"
DEVICE_SET_LABEL = "ceph.rook.io/DeviceSet"
HOSTNAME_LABEL = "kubernetes.io/hostname"

MON_HOST_SECRET = "rook-ceph-config"
OSD_STORE_FLAG = "--bluestore"

# OSDs on claims from a slow storage class
TUNE_SLOW_SETTINGS = (
    "--osd-recovery-sleep=0.1",
    "--osd-snap-trim-sleep=2",
    "--osd-delete-sleep=2",
)

# OSDs on claims from a fast storage class (SSD defaults)
TUNE_FAST_SETTINGS = (
    "--osd-op-num-threads-per-shard=2",
    "--osd-op-num-shards=8",
    "--osd-recovery-sleep=0",
    "--osd-snap-trim-sleep=0",
    "--osd-delete-sleep=0",
    "--bluestore-min-alloc-size=4096",
    "--bluestore-prefer-deferred-size=0",
    "--bluestore-compression-min-blob-size=8912",
    "--bluestore-compression-max-blob-size=65536",
    "--bluestore-max-blob-size=65536",
    "--bluestore-cache-size=3221225472",
    "--bluestore-throttle-cost-per-io=4000",
    "--bluestore-deferred-batch-ops=16",
)

LOGGING_FLAGS = (
    "--log-to-stderr=true",
    "--err-to-stderr=true",
    "--mon-cluster-log-to-stderr=true",
    "--log-stderr-prefix=debug ",
    "--default-log-to-file=false",
    "--default-mon-cluster-log-to-file=false",
)

UNREACHABLE_TOLERATION = {
    "key": "node.kubernetes.io/unreachable",
    "operator": "Exists",
    "effect": "NoExecute",
    "tolerationSeconds": 5,
}


def deployment_name(osd_id: int) -> str:
    return f"{APP_NAME}-{osd_id}"


def topology_node_affinity(topology_affinity: str) -> dict[str, Any]:
    """Required node affinity from a "key=value" topology label.

    Raises:
        PlanBuildError: If the value is not of the form key=value
    """
    key, sep, value = topology_affinity.partition("=")
    if not sep or not key or not value:
        raise PlanBuildError(
            message=f"Invalid topology affinity '{topology_affinity}', expected key=value",
            data={"topology_affinity": topology_affinity},
        )
    return {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [
                    {"matchExpressions": [{"key": key, "operator": "In", "values": [value]}]}
                ]
            }
        }
    }


class ContainerPipelineBuilder:
    """Build execution plans for OSD daemons."""

    def __init__(self, config: PlannerConfig):
        """Initialize builder.

        Args:
            config: Planner configuration (images, namespace, host paths, KMS)
        """
        self.config = config

    def build(self, topology: StorageTopology, props: DaemonProperties) -> ExecutionPlan:
        """Build the plan for one OSD.

        Args:
            topology: Classification of the OSD's storage
            props: Validated daemon properties

        Returns:
            Immutable ExecutionPlan

        Raises:
            PlanBuildError: If the properties lack what the topology requires
        """
        self._check_claims(topology, props)
        return _PlanBuild(self.config, topology, props).run()

    def _check_claims(self, topology: StorageTopology, props: DaemonProperties) -> None:
        missing = []
        if topology.on_pvc and not props.pvc:
            missing.append("pvc")
        if topology.has_separate_metadata_volume and not props.metadata_pvc:
            missing.append("metadata_pvc")
        if topology.has_separate_wal_volume and not props.wal_pvc:
            missing.append("wal_pvc")
        if missing:
            raise PlanBuildError(
                message=f"osd.{props.osd_id}: topology requires {', '.join(missing)}",
                data={"osd_id": props.osd_id, "missing": missing},
            )


class _PlanBuild:
    """State of a single build() call."""

    def __init__(self, config: PlannerConfig, topology: StorageTopology, props: DaemonProperties):
        self.config = config
        self.topology = topology
        self.props = props
        self.data_dir = osd_data_dir(props.osd_id)
        self.resolver = VolumeBindingResolver(
            mount_path=self.data_dir,
            host_root=cluster_host_dir(config.data_dir_host_path, config.namespace),
        )
        self.keys: KeyStepFactory | None = None
        if topology.encrypted and topology.on_pvc:
            self.keys = KeyStepFactory(
                key_source=topology.key_source,
                kms=config.kms,
                claim=props.pvc,
                image=config.ceph_image,
                resources=props.resources,
            )
        self.steps: list[PipelineStep] = []

    @property
    def volume_manager(self) -> bool:
        return self.topology.activation == ActivationMode.VOLUME_MANAGER

    @property
    def bridge(self) -> MountBridge:
        """Bridge of the primary claim, or of the local device."""
        if self.topology.on_pvc:
            return self.resolver.bridge_for(self.props.pvc)
        return self.resolver.bridge_for(self.props.block_path or f"osd-{self.props.osd_id}")

    def run(self) -> ExecutionPlan:
        props = self.props
        if self.volume_manager:
            self.steps.append(self._config_init_step())
            self.steps.append(self._copy_bins_step())

        if self.topology.on_pvc:
            self._add_device_copies()
            if self.keys is not None:
                self._add_encryption_steps(self.keys)
            self.steps.append(self._prime_step())
            self.steps.append(self._expand_step())
        else:
            self.steps.append(self._activate_local_step())

        daemon = self._daemon_container()
        self.steps.append(self._chown_step(daemon.volume_mounts))
        self._check_step_names(daemon)

        volumes = self._volumes()
        if not volumes:
            raise PlanBuildError(message=f"osd.{props.osd_id}: empty volumes")

        plan = ExecutionPlan(
            identity=str(props.osd_id),
            name=deployment_name(props.osd_id),
            namespace=self.config.namespace,
            steps=tuple(self.steps),
            daemon=daemon,
            volumes=tuple(volumes),
            labels=self._labels(),
            selector=self._selector(),
            host_pid=self.config.host_pid,
            host_ipc=self.topology.needs_host_ipc,
            host_network=self.config.host_network,
            service_account=self.config.service_account,
            priority_class_name=self.config.priority_class_name,
            scheduler_name=props.scheduler_name,
            node_selector=self._node_selector(),
            tolerations=self._tolerations(),
            affinity=self._affinity(),
        )
        logger.debug(
            "built osd plan",
            osd_id=props.osd_id,
            steps=plan.step_names(),
            **self.topology.describe(),
        )
        return plan

    # Phases

    def _config_init_step(self) -> PipelineStep:
        return PipelineStep(
            name=CONFIG_INIT_STEP,
            image=self.config.rook_image,
            args=("ceph", "osd", "init"),
            volume_mounts=(
                VolumeMount(name=ROOK_CONFIG_VOLUME, mount_path=ROOK_CONFIG_DIR),
                VolumeMount(name=CONFIG_OVERRIDE_VOLUME, mount_path=ETC_CEPH_DIR, read_only=True),
            ),
            env=tuple(
                self._config_env()
                + [
                    {"name": "ROOK_OSD_ID", "value": str(self.props.osd_id)},
                    {"name": "ROOK_IS_DEVICE", "value": "true"},
                ]
            ),
            **_root_context(),
        )

    def _copy_bins_step(self) -> PipelineStep:
        return PipelineStep(
            name=COPY_BINS_STEP,
            image=self.config.rook_image,
            args=("copy-binaries", "--copy-to-dir", ROOK_BINARIES_DIR),
            volume_mounts=(VolumeMount(name=ROOK_BINARIES_VOLUME, mount_path=ROOK_BINARIES_DIR),),
        )

    def _add_device_copies(self) -> None:
        props = self.props
        # An encrypted claim is copied next to its final name; the opened
        # mapping takes the final name later.
        suffix = "-tmp" if self.topology.encrypted else ""
        self.steps.append(self._copy_step(BLOCK_COPY_STEP, props.pvc, f"{BLOCK_NAME}{suffix}"))
        if self.topology.has_separate_metadata_volume:
            self.steps.append(
                self._copy_step(METADATA_COPY_STEP, props.metadata_pvc, f"{METADATA_NAME}{suffix}")
            )
        if self.topology.has_separate_wal_volume:
            self.steps.append(self._copy_step(WAL_COPY_STEP, props.wal_pvc, f"{WAL_NAME}{suffix}"))

    def _copy_step(self, name: str, claim: str, dest_name: str) -> PipelineStep:
        source = f"/{claim}"
        return PipelineStep(
            name=name,
            image=self.config.ceph_image,
            command=DEVICE_COPY.command(PVC_SOURCE=source, PVC_DEST=f"{self.data_dir}/{dest_name}"),
            volume_devices=(VolumeDevice(name=claim, device_path=source),),
            volume_mounts=(self.bridge.mount(),),
            resources=self.props.resources,
            **_root_context(),
        )

    def _add_encryption_steps(self, keys: KeyStepFactory) -> None:
        props = self.props
        self.steps.extend(keys.retrieval_steps())

        opens = [(OPEN_BLOCK_STEP, props.pvc, DMCRYPT_BLOCK, BLOCK_NAME)]
        copies = [(ENCRYPTED_BLOCK_COPY_STEP, props.pvc, DMCRYPT_BLOCK, BLOCK_NAME)]
        if self.topology.has_separate_metadata_volume:
            opens.append((OPEN_METADATA_STEP, props.metadata_pvc, DMCRYPT_METADATA, METADATA_NAME))
            copies.append(
                (ENCRYPTED_METADATA_COPY_STEP, props.metadata_pvc, DMCRYPT_METADATA, METADATA_NAME)
            )
        if self.topology.has_separate_wal_volume:
            opens.append((OPEN_WAL_STEP, props.wal_pvc, DMCRYPT_WAL, WAL_NAME))
            copies.append((ENCRYPTED_WAL_COPY_STEP, props.wal_pvc, DMCRYPT_WAL, WAL_NAME))

        for index, (name, claim, crypt_type, file_name) in enumerate(opens):
            last = index == len(opens) - 1
            self.steps.append(
                keys.open_step(
                    name=name,
                    block_path=f"{self.data_dir}/{file_name}-tmp",
                    claim=claim,
                    crypt_type=crypt_type,
                    bridge=self.bridge,
                    purge_key=keys.purges_key and last,
                )
            )

        for name, claim, crypt_type, file_name in copies:
            self.steps.append(
                PipelineStep(
                    name=name,
                    image=self.config.ceph_image,
                    command=DEVICE_COPY.command(
                        PVC_SOURCE=dm_path(claim, crypt_type),
                        PVC_DEST=f"{self.data_dir}/{file_name}",
                    ),
                    volume_mounts=(self.bridge.mount(), device_mapper_mount()),
                    resources=props.resources,
                    **_root_context(),
                )
            )

        block_dm = dm_name(props.pvc, DMCRYPT_BLOCK)
        self.steps.append(
            PipelineStep(
                name=ENCRYPTED_STATUS_STEP,
                image=self.config.ceph_image,
                command=("cryptsetup",),
                args=("--verbose", "status", block_dm),
                volume_mounts=(self.bridge.mount(),),
                resources=props.resources,
                **_privileged_context(),
            )
        )
        # Resizing needs the mapping open; the mapper dir is mounted so
        # multipath devices can be resolved.
        self.steps.append(
            PipelineStep(
                name=ENCRYPTED_EXPAND_STEP,
                image=self.config.ceph_image,
                command=("cryptsetup",),
                args=("--verbose", "resize", block_dm),
                volume_mounts=(self.bridge.mount(), device_mapper_mount()),
                resources=props.resources,
                **_privileged_context(),
            )
        )

    def _prime_step(self) -> PipelineStep:
        block = f"{self.data_dir}/{BLOCK_NAME}"
        devices: tuple[VolumeDevice, ...] = ()
        # An opened mapping was already copied to the block path
        if not self.topology.encrypted:
            devices = (VolumeDevice(name=self.props.pvc, device_path=block),)
        return PipelineStep(
            name=ACTIVATE_STEP,
            image=self.config.ceph_image,
            command=("ceph-bluestore-tool",),
            args=("prime-osd-dir", "--dev", block, "--path", self.data_dir, "--no-mon-config"),
            volume_devices=devices,
            volume_mounts=(self.bridge.mount(),),
            resources=self.props.resources,
            **_privileged_context(),
        )

    def _expand_step(self) -> PipelineStep:
        return PipelineStep(
            name=EXPAND_STEP,
            image=self.config.ceph_image,
            command=("ceph-bluestore-tool",),
            args=("bluefs-bdev-expand", "--path", self.data_dir),
            volume_mounts=(self.bridge.mount(),),
            resources=self.props.resources,
            **_privileged_context(),
        )

    def _activate_local_step(self) -> PipelineStep:
        props = self.props
        return PipelineStep(
            name=ACTIVATE_STEP,
            image=self.config.ceph_image,
            command=ACTIVATE_LOCAL_DEVICE.command(
                OSD_ID=str(props.osd_id),
                OSD_UUID=props.uuid,
                OSD_STORE_FLAG=OSD_STORE_FLAG,
                CV_MODE=props.cv_mode,
                DEVICE=props.block_path,
            ),
            env=(
                {"name": "CEPH_VOLUME_DEBUG", "value": "1"},
                {"name": "CEPH_VOLUME_SKIP_RESTORECON", "value": "1"},
                {"name": "DM_DISABLE_UDEV", "value": "1"},
                {"name": "ROOK_METADATA_DEVICE", "value": props.metadata_device},
                {"name": "ROOK_WAL_DEVICE", "value": props.wal_device},
            ),
            volume_mounts=(
                self.bridge.mount(),
                VolumeMount(name=DEVICES_VOLUME, mount_path="/dev"),
                VolumeMount(name=CONFIG_OVERRIDE_VOLUME, mount_path=ETC_CEPH_DIR, read_only=True),
            ),
            resources=props.resources,
            **_privileged_context(),
        )

    def _chown_step(self, mounts: tuple[VolumeMount, ...]) -> PipelineStep:
        dirs = [CEPH_LOG_DIR, CEPH_CRASH_DIR]
        # Local devices are chowned by the activate script
        if self.topology.on_pvc:
            dirs.append(self.data_dir)
        return PipelineStep(
            name=CHOWN_STEP,
            image=self.config.ceph_image,
            command=("chown",),
            args=("--verbose", "--recursive", "ceph:ceph", *dirs),
            volume_mounts=mounts,
            resources=self.props.resources,
            **_privileged_context(),
        )

    def _daemon_container(self) -> PipelineStep:
        props = self.props
        osd_id = str(props.osd_id)
        daemon_args = [
            "--foreground",
            "--id",
            osd_id,
            "--fsid",
            self.config.fsid,
            "--setuser",
            "ceph",
            "--setgroup",
            "ceph",
            f"--crush-location={props.location}",
        ]
        if self.volume_manager:
            command: tuple[str, ...] = (f"{ROOK_BINARIES_DIR}/tini",)
            args = ["--", f"{ROOK_BINARIES_DIR}/rook", "ceph", "osd", "start", "--"]
            daemon_args[5:5] = ["--cluster", "ceph"]
            args.extend(daemon_args)
        else:
            command = ("ceph-osd",)
            args = daemon_args

        if self.topology.on_pvc:
            if props.tune_slow_device_class:
                args.extend(TUNE_SLOW_SETTINGS)
            elif props.tune_fast_device_class:
                args.extend(TUNE_FAST_SETTINGS)
        args.extend(LOGGING_FLAGS)
        if self.config.ipv6:
            args.append("--ms-bind-ipv6=true")

        return PipelineStep(
            name=DAEMON_CONTAINER,
            image=self.config.ceph_image,
            command=command,
            args=tuple(args),
            volume_mounts=tuple(self._daemon_mounts()),
            env=tuple(self._daemon_env()),
            resources=props.resources,
            working_dir=CEPH_LOG_DIR,
            liveness_probe=_liveness_probe(osd_id),
            **_privileged_context(),
        )

    # Containers' environment and mounts

    def _config_env(self) -> list[dict[str, Any]]:
        namespace = self.config.namespace
        return [
            {"name": "ROOK_CLUSTER_ID", "value": namespace},
            {"name": "ROOK_CLUSTER_NAME", "value": namespace},
            {"name": "ROOK_FSID", "value": self.config.fsid},
            {"name": "ROOK_CRUSHMAP_HOSTNAME", "value": self.props.crush_hostname},
            {"name": "ROOK_OSD_DATA_DIR", "value": self.data_dir},
            {"name": "TINI_SUBREAPER", "value": ""},
        ]

    def _daemon_env(self) -> list[dict[str, Any]]:
        props = self.props
        env = self._config_env() + [
            {"name": "ROOK_OSD_UUID", "value": props.uuid},
            {"name": "ROOK_OSD_ID", "value": str(props.osd_id)},
            {
                "name": "ROOK_CEPH_MON_HOST",
                "valueFrom": {"secretKeyRef": {"name": MON_HOST_SECRET, "key": "mon_host"}},
            },
            {"name": "CEPH_ARGS", "value": "-m $(ROOK_CEPH_MON_HOST)"},
        ]
        if self.topology.on_pvc:
            # A resized claim changes the spec and restarts the daemon
            env.append({"name": "ROOK_OSD_PVC_SIZE", "value": props.pvc_size})
            if props.portable:
                env.append({"name": "ROOK_TOPOLOGY_AFFINITY", "value": props.topology_affinity})
            env.extend(
                [
                    {"name": "ROOK_PVC_BACKED_OSD", "value": "true"},
                    {"name": "ROOK_BLOCK_PATH", "value": props.block_path},
                    {"name": "ROOK_CV_MODE", "value": props.cv_mode},
                ]
            )
            if self.volume_manager:
                env.append({"name": "ROOK_LV_BACKED_PV", "value": str(props.lv_backed_pv).lower()})
        return env

    def _daemon_mounts(self) -> list[VolumeMount]:
        mounts = [
            VolumeMount(name=CONFIG_OVERRIDE_VOLUME, mount_path=ETC_CEPH_DIR, read_only=True),
            VolumeMount(name=LOG_VOLUME, mount_path=CEPH_LOG_DIR),
            VolumeMount(name=CRASH_VOLUME, mount_path=CEPH_CRASH_DIR),
        ]
        if not self.topology.on_pvc:
            mounts.append(VolumeMount(name=DEVICES_VOLUME, mount_path="/dev"))
        mounts.append(VolumeMount(name=UDEV_VOLUME, mount_path=UDEV_DIR))
        if self.topology.encrypted:
            mounts.append(device_mapper_mount())
        if self.volume_manager:
            mounts.append(VolumeMount(name=ROOK_BINARIES_VOLUME, mount_path=ROOK_BINARIES_DIR))
        mounts.append(self.bridge.mount())
        return mounts

    # Pod

    def _volumes(self) -> list[dict[str, Any]]:
        props = self.props
        host_dir = cluster_host_dir(self.config.data_dir_host_path, self.config.namespace)
        volumes: list[dict[str, Any]] = [
            {
                "name": CONFIG_OVERRIDE_VOLUME,
                "configMap": {
                    "name": CONFIG_OVERRIDE_VOLUME,
                    "items": [{"key": "config", "path": "ceph.conf", "mode": 0o444}],
                },
            },
            {"name": ROOK_CONFIG_VOLUME, "emptyDir": {}},
            {"name": LOG_VOLUME, "hostPath": {"path": f"{host_dir}/log"}},
            {"name": CRASH_VOLUME, "hostPath": {"path": f"{host_dir}/crash"}},
        ]
        if self.topology.on_pvc:
            for claim in (props.pvc, props.metadata_pvc, props.wal_pvc):
                if claim:
                    volumes.append({"name": claim, "persistentVolumeClaim": {"claimName": claim}})
        else:
            volumes.append({"name": DEVICES_VOLUME, "hostPath": {"path": "/dev"}})
        volumes.extend(bridge.volume() for bridge in self.resolver.bridges())
        if self.keys is not None:
            volumes.extend(self.keys.volumes())
        volumes.append({"name": UDEV_VOLUME, "hostPath": {"path": UDEV_DIR}})
        if self.topology.encrypted:
            volumes.append(device_mapper_volume())
        if self.volume_manager:
            volumes.append({"name": ROOK_BINARIES_VOLUME, "emptyDir": {}})
        return volumes

    def _labels(self) -> dict[str, str]:
        props = self.props
        labels = {
            **self._selector(),
            "ceph_daemon_type": "osd",
            "ceph_daemon_id": str(props.osd_id),
            "failure-domain": props.crush_hostname,
            "portable": str(props.portable).lower(),
        }
        if self.topology.on_pvc:
            labels[PVC_LABEL] = props.pvc
            labels[DEVICE_SET_LABEL] = props.device_set_name
        return labels

    def _selector(self) -> dict[str, str]:
        return {
            APP_LABEL: APP_NAME,
            CLUSTER_LABEL: self.config.namespace,
            OSD_ID_LABEL: str(self.props.osd_id),
        }

    def _node_selector(self) -> dict[str, str]:
        if self.props.portable:
            return {}
        return {HOSTNAME_LABEL: self.props.crush_hostname}

    def _tolerations(self) -> tuple[dict[str, Any], ...]:
        # A portable daemon moves quickly off an unreachable node
        if self.topology.on_pvc and self.props.portable:
            return (dict(UNREACHABLE_TOLERATION),)
        return ()

    def _affinity(self) -> dict[str, Any]:
        if not (self.props.portable and self.props.topology_affinity):
            return {}
        logger.debug(
            "assigning topology affinity",
            osd_id=self.props.osd_id,
            topology_affinity=self.props.topology_affinity,
        )
        return topology_node_affinity(self.props.topology_affinity)

    def _check_step_names(self, daemon: PipelineStep) -> None:
        seen: set[str] = set()
        for step in (*self.steps, daemon):
            if step.name in seen:
                raise PlanBuildError(
                    message=f"osd.{self.props.osd_id}: duplicate step name '{step.name}'",
                    data={"step": step.name},
                )
            seen.add(step.name)


def _root_context() -> dict[str, Any]:
    return {"privileged": True, "run_as_user": 0}


def _privileged_context() -> dict[str, Any]:
    return {"privileged": True, "run_as_user": 0, "read_only_root_filesystem": False}


def _liveness_probe(osd_id: str) -> dict[str, Any]:
    socket = f"/run/ceph/ceph-osd.{osd_id}.asok"
    return {
        "exec": {
            "command": ["env", "-i", "sh", "-c", f"ceph --admin-daemon {socket} status"],
        },
        "initialDelaySeconds": 10,
    }
