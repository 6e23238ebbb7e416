"""
Custom exception types for the remediation engine.

Every error carries a machine-readable ``code`` and the HTTP status the
transport layer should answer with. Guardrail failures are not exceptions:
they travel as data on the job and route it to approval.
"""

from typing import Any, Dict, List, Optional


class RemediationEngineError(Exception):
    """Base exception for all remediation engine errors."""

    code = "REMEDIATION_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an error payload."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RemediationEngineError):
    """Malformed or unsupported remediation request."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, {"errors": errors} if errors else None)
        self.errors = errors or []


class NotFoundError(RemediationEngineError):
    """Remediation job not found."""

    code = "NOT_FOUND"
    http_status = 404


class InvalidStateTransition(RemediationEngineError):
    """Operation not valid for the job's current status."""

    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, job_id: str, current: Any, target: Any):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Job {job_id} cannot move from {current_value} to {target_value}",
            {"jobId": job_id, "currentStatus": current_value, "targetStatus": target_value},
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class ConflictError(RemediationEngineError):
    """An active job already exists for the same resource key."""

    code = "CONFLICT"
    http_status = 409


class ExecutionFailure(RemediationEngineError):
    """Fix executor could not apply the change."""

    code = "EXECUTION_FAILURE"
    http_status = 502


class NoRollbackAvailable(RemediationEngineError):
    """Job is not applied or recorded no rollback descriptor."""

    code = "NO_ROLLBACK_AVAILABLE"
    http_status = 409


class RollbackFailure(RemediationEngineError):
    """Rollback did not undo the recorded changes."""

    code = "ROLLBACK_FAILURE"
    http_status = 502

    def __init__(self, message: str, job: Any = None, rollback_result: Any = None):
        super().__init__(message)
        self.job = job
        self.rollback_result = rollback_result

    @property
    def partial_rollback(self) -> bool:
        return bool(getattr(self.rollback_result, "partial_rollback", False))

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["partialRollback"] = self.partial_rollback
        if self.rollback_result is not None:
            payload["rollback"] = self.rollback_result.model_dump(mode="json", by_alias=True)
        return payload


class PartialRollbackFailure(RollbackFailure):
    """Rollback undid some recorded changes but not all of them."""

    code = "PARTIAL_ROLLBACK"


class StoreError(RemediationEngineError):
    """Job store read or write failed."""

    code = "STORE_ERROR"
    http_status = 503


class ConfigurationError(RemediationEngineError):
    """Invalid or missing configuration."""

    code = "CONFIGURATION_ERROR"


# Export mapping for common usage
__all__ = [
    "RemediationEngineError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateTransition",
    "ConflictError",
    "ExecutionFailure",
    "NoRollbackAvailable",
    "RollbackFailure",
    "PartialRollbackFailure",
    "StoreError",
    "ConfigurationError",
]
