"""Cluster API access for deployments.

The reconciler talks to the scheduler through `ClusterClient`. The
production implementation shells out to kubectl with JSON in and out, and
maps kubectl's error output onto `ApplyError.reason` so callers can tell
an existing object from a rejected one.
"""

from __future__ import annotations

import json
import re
import subprocess
from typing import Any, Protocol

from ..errors import (
    REASON_ALREADY_EXISTS,
    REASON_CONFLICT,
    REASON_INVALID,
    REASON_NOT_FOUND,
    REASON_UNKNOWN,
    ApplyError,
)
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 60

# "Error from server (AlreadyExists): deployments.apps "x" already exists"
_SERVER_REASON_RE = re.compile(r"Error from server \((\w+)\)")
_KNOWN_REASONS = (REASON_ALREADY_EXISTS, REASON_NOT_FOUND, REASON_CONFLICT, REASON_INVALID)


def parse_reason(stderr: str) -> str:
    """Extract the API status reason from kubectl error output."""
    match = _SERVER_REASON_RE.search(stderr)
    if match and match.group(1) in _KNOWN_REASONS:
        return match.group(1)
    # Validation failures are reported without the server prefix:
    # The Deployment "x" is invalid: spec.selector: ... field is immutable
    if " is invalid" in stderr or "field is immutable" in stderr:
        return REASON_INVALID
    if "NotFound" in stderr or "not found" in stderr:
        return REASON_NOT_FOUND
    return REASON_UNKNOWN


class ClusterClient(Protocol):
    """Deployment operations the reconciler needs."""

    def get(self, name: str) -> dict[str, Any] | None: ...

    def create(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    def delete(
        self,
        name: str,
        grace_period_seconds: int | None = None,
        propagation: str | None = None,
    ) -> None: ...

    def list(self, label_selector: str) -> list[dict[str, Any]]: ...


class KubectlClusterClient:
    """Deployments in one namespace, through kubectl."""

    def __init__(
        self,
        namespace: str,
        kubeconfig: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """Initialize client.

        Args:
            namespace: Namespace all objects live in
            kubeconfig: Path to kubeconfig file
            timeout: Per-call timeout in seconds
        """
        self.namespace = namespace
        self.kubeconfig = kubeconfig
        self.timeout = timeout

    def _kubectl_cmd(self) -> list[str]:
        """Build base kubectl command."""
        cmd = ["kubectl"]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        cmd.extend(["--namespace", self.namespace])
        return cmd

    def _run(self, args: list[str], action: str, input_obj: dict[str, Any] | None = None) -> str:
        cmd = self._kubectl_cmd() + args
        logger.debug("running kubectl", action=action, args=args)
        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(input_obj) if input_obj is not None else None,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ApplyError(message="kubectl not found. Is kubectl installed?") from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(
                message=f"kubectl {action} timed out after {self.timeout}s",
                data={"action": action},
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise ApplyError(
                message=f"Failed to {action}: {stderr}",
                reason=parse_reason(stderr),
                data={"action": action, "namespace": self.namespace},
            )
        return result.stdout

    def _decode(self, output: str, action: str) -> Any:
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ApplyError(
                message=f"Unexpected kubectl output for {action}: {e}",
                data={"action": action},
            ) from e

    def get(self, name: str) -> dict[str, Any] | None:
        """Get a deployment, or None if it does not exist."""
        action = f"get deployment {name}"
        try:
            output = self._run(["get", "deployment", name, "--output", "json"], action)
        except ApplyError as e:
            if e.is_not_found:
                return None
            raise
        return self._decode(output, action)

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        action = f"create deployment {obj['metadata']['name']}"
        output = self._run(["create", "--filename", "-", "--output", "json"], action, obj)
        return self._decode(output, action)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace a deployment in place."""
        action = f"update deployment {obj['metadata']['name']}"
        output = self._run(["replace", "--filename", "-", "--output", "json"], action, obj)
        return self._decode(output, action)

    def delete(
        self,
        name: str,
        grace_period_seconds: int | None = None,
        propagation: str | None = None,
    ) -> None:
        """Delete a deployment.

        Args:
            name: Deployment name
            grace_period_seconds: Pod termination grace period (0 = immediate)
            propagation: Dependents deletion policy (e.g. "Foreground")
        """
        args = ["delete", "deployment", name]
        if grace_period_seconds is not None:
            args.append(f"--grace-period={grace_period_seconds}")
            if grace_period_seconds == 0:
                args.append("--force")
        if propagation:
            args.append(f"--cascade={propagation.lower()}")
        self._run(args, f"delete deployment {name}")

    def list(self, label_selector: str) -> list[dict[str, Any]]:
        action = f"list deployments {label_selector}"
        output = self._run(
            ["get", "deployments", "--selector", label_selector, "--output", "json"], action
        )
        return self._decode(output, action).get("items", [])
