"""Planner configuration management.

Handles persistent configuration stored in ~/.cephplan/config.yaml.
Supports environment variable overrides and tracks where each value
came from.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .kms.config import KMSConfig
from .shared.paths import CONFIG_FILE, DEFAULT_DATA_DIR_HOST_PATH

# Default values
DEFAULT_NAMESPACE = "rook-ceph"
DEFAULT_CEPH_IMAGE = "quay.io/ceph/ceph:v15.2.8"
DEFAULT_ROOK_IMAGE = "rook/ceph:v1.5.4"
DEFAULT_CEPH_MAJOR_VERSION = 15
DEFAULT_SERVICE_ACCOUNT = "rook-ceph-osd"
DEFAULT_LOG_LEVEL = "warning"

# Ceph Octopus; older releases need the host PID namespace
OCTOPUS_MAJOR_VERSION = 15

# Environment variable mappings
ENV_VARS = {
    "namespace": "CEPHPLAN_NAMESPACE",
    "ceph_image": "CEPHPLAN_CEPH_IMAGE",
    "rook_image": "CEPHPLAN_ROOK_IMAGE",
    "data_dir_host_path": "CEPHPLAN_DATA_DIR_HOST_PATH",
    "fsid": "CEPHPLAN_FSID",
    "ceph_major_version": "CEPHPLAN_CEPH_MAJOR_VERSION",
    "host_network": "CEPHPLAN_HOST_NETWORK",
    "ipv6": "CEPHPLAN_IPV6",
    "service_account": "CEPHPLAN_SERVICE_ACCOUNT",
    "priority_class_name": "CEPHPLAN_PRIORITY_CLASS_NAME",
    "kubeconfig": "CEPHPLAN_KUBECONFIG",
    "log_level": "CEPHPLAN_LOG_LEVEL",
}

BOOL_KEYS = {"host_network", "ipv6"}
INT_KEYS = {"ceph_major_version"}


@dataclass
class PlannerConfig:
    """Planner configuration."""

    namespace: str = DEFAULT_NAMESPACE
    ceph_image: str = DEFAULT_CEPH_IMAGE
    rook_image: str = DEFAULT_ROOK_IMAGE
    data_dir_host_path: str = DEFAULT_DATA_DIR_HOST_PATH
    fsid: str = ""
    ceph_major_version: int = DEFAULT_CEPH_MAJOR_VERSION
    host_network: bool = False
    ipv6: bool = False
    service_account: str = DEFAULT_SERVICE_ACCOUNT
    priority_class_name: str = ""
    kubeconfig: str | None = None
    log_level: str = DEFAULT_LOG_LEVEL
    kms: KMSConfig = field(default_factory=KMSConfig)

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    @property
    def host_pid(self) -> bool:
        """Daemons before Octopus share the host PID namespace."""
        return self.ceph_major_version < OCTOPUS_MAJOR_VERSION

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def to_dict(self) -> dict[str, Any]:
        """Public values, for display."""
        data = {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}
        data["kms"] = {f.name: getattr(self.kms, f.name) for f in fields(self.kms)}
        return data


def get_config_path() -> Path:
    """Get the config file path.

    Returns:
        Path to ~/.cephplan/config.yaml
    """
    return CONFIG_FILE


def _coerce(key: str, value: Any) -> Any:
    if key in BOOL_KEYS:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if key in INT_KEYS:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(
                message=f"{key}: expected an integer, got {value!r}",
                data={"key": key},
            )
    return str(value)


def load_config(path: str | Path | None = None) -> PlannerConfig:
    """Load planner configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (explicit path, else ~/.cephplan/config.yaml)
    3. Defaults

    Args:
        path: Optional explicit config file path

    Returns:
        PlannerConfig with values and sources

    Raises:
        ValidationError: If the config file is malformed
    """
    config = PlannerConfig()
    sources: dict[str, str] = {key: "default" for key in ENV_VARS}
    sources["kms"] = "default"

    config_path = Path(path) if path else get_config_path()
    if path and not config_path.exists():
        raise ValidationError(message=f"Config file not found: {config_path}")

    if config_path.exists():
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError(
                message=f"Invalid YAML in {config_path}: {e}",
                data={"path": str(config_path)},
            )
        if not isinstance(file_config, dict):
            raise ValidationError(message=f"{config_path}: expected a mapping at top level")

        for key in ENV_VARS:
            if key in file_config and file_config[key] is not None:
                setattr(config, key, _coerce(key, file_config[key]))
                sources[key] = "config file"
        if "kms" in file_config:
            config.kms = KMSConfig.from_dict(file_config["kms"])
            sources["kms"] = "config file"

    # Override with environment variables
    for key, env_var in ENV_VARS.items():
        if os.environ.get(env_var):
            setattr(config, key, _coerce(key, os.environ[env_var]))
            sources[key] = "environment"

    config._sources = sources
    return config
