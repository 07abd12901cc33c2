"""Error taxonomy for planning and reconciling.

Lower layers (classifier, pipeline builder, key flow, cluster clients) raise
these typed errors; the reconciler and the CLI decide what is retryable.
"""

from dataclasses import dataclass, field
from typing import Any

# Error codes
VALIDATION_ERROR = "validation"
PLAN_BUILD_ERROR = "plan_build"
APPLY_ERROR = "apply"
RECREATE_FAILURE = "recreate_failure"
KEY_RETRIEVAL_ERROR = "key_retrieval"
CLEANUP_WARNING = "cleanup_warning"

# Cluster API rejection reasons
REASON_ALREADY_EXISTS = "AlreadyExists"
REASON_NOT_FOUND = "NotFound"
REASON_CONFLICT = "Conflict"
REASON_INVALID = "Invalid"
REASON_UNKNOWN = "Unknown"


@dataclass
class CephPlanError(Exception):
    """Base error class for cephplan errors."""

    code: str
    message: str
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable error object."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.data:
            error["data"] = self.data
        return error


@dataclass
class ValidationError(CephPlanError):
    """Daemon properties or configuration cannot be classified."""

    code: str = VALIDATION_ERROR
    message: str = "Validation failed"
    retryable: bool = False


@dataclass
class PlanBuildError(CephPlanError):
    """An internal invariant of plan construction was violated."""

    code: str = PLAN_BUILD_ERROR
    message: str = "Failed to build execution plan"
    retryable: bool = False


@dataclass
class ApplyError(CephPlanError):
    """A cluster API create/update/delete call failed."""

    code: str = APPLY_ERROR
    message: str = "Cluster API call failed"
    retryable: bool = True
    reason: str = REASON_UNKNOWN

    @property
    def is_not_found(self) -> bool:
        return self.reason == REASON_NOT_FOUND

    @property
    def is_already_exists(self) -> bool:
        return self.reason == REASON_ALREADY_EXISTS

    @property
    def is_rejection(self) -> bool:
        """Whether the API refused the object itself (immutable field, schema)."""
        return self.reason == REASON_INVALID


@dataclass
class RecreateFailure(CephPlanError):
    """The delete half of delete-and-recreate succeeded but the create failed."""

    code: str = RECREATE_FAILURE
    message: str = "Failed to recreate deployment"
    retryable: bool = False


@dataclass
class KeyRetrievalError(CephPlanError):
    """The encryption key could not be obtained."""

    code: str = KEY_RETRIEVAL_ERROR
    message: str = "Failed to retrieve encryption key"
    retryable: bool = False


@dataclass
class CleanupWarning(CephPlanError):
    """Best-effort garbage collection failed. Reported, never raised."""

    code: str = CLEANUP_WARNING
    message: str = "Cleanup failed"
    retryable: bool = True
