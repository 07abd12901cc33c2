"""Ceph credential removal.

Removing a daemon also removes its cephx entity. Issuing credentials is not
done here.
"""

from __future__ import annotations

import subprocess
from typing import Protocol

from ..config import PlannerConfig
from ..errors import ApplyError
from ..shared.logging import get_logger
from ..shared.paths import admin_config_path, admin_keyring_path

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30
ADMIN_ENTITY = "client.admin"


class CredentialClient(Protocol):
    """Removes daemon credentials."""

    def delete_credential(self, entity: str) -> None: ...


class CephAuthClient:
    """Delete cephx entities with the ceph CLI."""

    def __init__(
        self,
        cluster_name: str,
        config_path: str,
        keyring_path: str,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """Initialize client.

        Args:
            cluster_name: Ceph cluster name (the operator namespace)
            config_path: ceph.conf used to reach the monitors
            keyring_path: Admin keyring
            timeout: Per-call timeout in seconds
        """
        self.cluster_name = cluster_name
        self.config_path = config_path
        self.keyring_path = keyring_path
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: PlannerConfig) -> CephAuthClient:
        return cls(
            cluster_name=config.namespace,
            config_path=str(admin_config_path(config.data_dir_host_path, config.namespace)),
            keyring_path=str(admin_keyring_path(config.data_dir_host_path, config.namespace)),
        )

    def _ceph_cmd(self) -> list[str]:
        return [
            "ceph",
            "--cluster",
            self.cluster_name,
            "--conf",
            self.config_path,
            "--name",
            ADMIN_ENTITY,
            "--keyring",
            self.keyring_path,
        ]

    def delete_credential(self, entity: str) -> None:
        """Delete one entity. An entity that is already gone counts as deleted.

        Raises:
            ApplyError: If the ceph CLI fails for any other reason
        """
        try:
            result = subprocess.run(
                self._ceph_cmd() + ["auth", "del", entity],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ApplyError(message="ceph not found. Is the ceph CLI installed?") from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(
                message=f"ceph auth del {entity} timed out after {self.timeout}s",
                data={"entity": entity},
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if "does not exist" in stderr or "ENOENT" in stderr:
                logger.debug("credential already removed", entity=entity)
                return
            raise ApplyError(
                message=f"Failed to delete credential {entity}: {stderr}",
                data={"entity": entity, "returncode": result.returncode},
            )
        logger.info("credential deleted", entity=entity)
