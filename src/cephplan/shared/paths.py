"""Path management for cephplan.

Local paths (~/.cephplan) and the fixed in-container paths that the
generated pipelines agree on.
"""

from pathlib import Path

# Base directory for local cephplan state
CEPHPLAN_DIR = Path.home() / ".cephplan"

# Default CLI configuration file
CONFIG_FILE = CEPHPLAN_DIR / "config.yaml"

# Host directory that backs bridges, logs and crash dumps
DEFAULT_DATA_DIR_HOST_PATH = "/var/lib/rook"

# In-container paths
OSD_DATA_DIR_PREFIX = "/var/lib/ceph/osd/ceph-"
CEPH_LOG_DIR = "/var/log/ceph"
CEPH_CRASH_DIR = "/var/lib/ceph/crash"
ETC_CEPH_DIR = "/etc/ceph"
ROOK_CONFIG_DIR = "/var/lib/rook"
ROOK_BINARIES_DIR = "/rook"
DEVICE_MAPPER_DIR = "/dev/mapper"
UDEV_DIR = "/run/udev"
VAULT_TLS_DIR = "/etc/vault"


def osd_data_dir(osd_id: int | str) -> str:
    """Get the in-container data directory of an OSD.

    Args:
        osd_id: OSD ordinal

    Returns:
        Path like /var/lib/ceph/osd/ceph-0
    """
    return f"{OSD_DATA_DIR_PREFIX}{osd_id}"


def cluster_host_dir(data_dir_host_path: str, namespace: str) -> str:
    """Get the per-cluster directory under the host data dir."""
    return str(Path(data_dir_host_path) / namespace)


def admin_config_path(data_dir_host_path: str, namespace: str) -> Path:
    """Get the ceph.conf the operator uses to talk to the cluster."""
    return Path(data_dir_host_path) / namespace / f"{namespace}.config"


def admin_keyring_path(data_dir_host_path: str, namespace: str) -> Path:
    """Get the admin keyring the operator uses to talk to the cluster."""
    return Path(data_dir_host_path) / namespace / "client.admin.keyring"
