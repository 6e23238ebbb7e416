"""
Compliance Shepherd remediation workflow engine.

Decides whether, when, and how an automated fix for a compliance finding is
applied to a cloud resource, and how it is undone.
"""
from .version import __version__, VERSION_INFO, get_version, get_version_info
from .config import EngineConfig
from .exceptions import (
    ConflictError,
    ExecutionFailure,
    InvalidStateTransition,
    NoRollbackAvailable,
    NotFoundError,
    PartialRollbackFailure,
    RemediationEngineError,
    RollbackFailure,
    ValidationError,
)
from .models import (
    GateDecision,
    ImpactEstimate,
    JobStatus,
    RemediationJob,
    RemediationRequest,
    RemediationResult,
    RiskLevel,
    RollbackDescriptor,
    RollbackResult,
    SafetyCheck,
    SafetyCheckResult,
    Severity,
)
from .remediation import RemediationOrchestrator, build_orchestrator

__all__ = [
    "__version__",
    "VERSION_INFO",
    "get_version",
    "get_version_info",
    "EngineConfig",
    "ConflictError",
    "ExecutionFailure",
    "InvalidStateTransition",
    "NoRollbackAvailable",
    "NotFoundError",
    "PartialRollbackFailure",
    "RemediationEngineError",
    "RollbackFailure",
    "ValidationError",
    "GateDecision",
    "ImpactEstimate",
    "JobStatus",
    "RemediationJob",
    "RemediationRequest",
    "RemediationResult",
    "RiskLevel",
    "RollbackDescriptor",
    "RollbackResult",
    "SafetyCheck",
    "SafetyCheckResult",
    "Severity",
    "RemediationOrchestrator",
    "build_orchestrator",
]
