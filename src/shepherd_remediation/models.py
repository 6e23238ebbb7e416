"""
Data models for the remediation engine using Pydantic for validation.

Field names are snake_case in Python; every model reads and writes the
camelCase aliases used on the wire (``findingId``, ``partialRollback``, ...).
"""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError
from .utils import utc_now

_ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

_RANKS = {"LOW": 0, "MEDIUM": 1, "HIGH": 2}
_BY_RANK = ["LOW", "MEDIUM", "HIGH"]


class Severity(str, Enum):
    """Severity of a guardrail check."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]


class RiskLevel(str, Enum):
    """Predicted blast-radius tier of a fix."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    def escalate(self, steps: int = 1) -> "RiskLevel":
        """Raise the tier by ``steps``, capped at HIGH."""
        return RiskLevel(_BY_RANK[min(self.rank + max(steps, 0), len(_BY_RANK) - 1)])

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)


class JobStatus(str, Enum):
    """Remediation job lifecycle states."""
    PENDING = "PENDING"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PENDING_APPROVAL, JobStatus.APPROVED})

ALLOWED_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.PENDING_APPROVAL, JobStatus.APPLIED, JobStatus.FAILED}),
    JobStatus.PENDING_APPROVAL: frozenset({JobStatus.APPROVED}),
    JobStatus.APPROVED: frozenset({JobStatus.APPLIED, JobStatus.FAILED}),
    JobStatus.APPLIED: frozenset({JobStatus.ROLLED_BACK}),
    JobStatus.FAILED: frozenset(),
    JobStatus.ROLLED_BACK: frozenset(),
}


class GateDecision(str, Enum):
    """Outcome of the approval gate."""
    AUTO_APPLY = "AUTO_APPLY"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class RollbackActionStatus(str, Enum):
    """Status of a single undo step."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class AuditEvent(str, Enum):
    """Kinds of audit trail entries."""
    JOB_CREATED = "JOB_CREATED"
    SAFETY_EVALUATED = "SAFETY_EVALUATED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_NOTIFICATION_FAILED = "APPROVAL_NOTIFICATION_FAILED"
    APPROVED = "APPROVED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_PARTIAL = "ROLLBACK_PARTIAL"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class WireModel(BaseModel):
    """Base model reading and writing camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary with wire aliases."""
        return self.model_dump(mode="json", by_alias=True)


class RemediationRequest(WireModel):
    """
    A request to remediate one finding on one resource.

    Immutable once submitted.

    Attributes:
        finding_id: Compliance finding being remediated
        remediation_type: Kind of fix (e.g. ENABLE_BUCKET_ENCRYPTION)
        resource_id: Target resource identifier (bucket name, role name, ...)
        resource_type: Target resource kind (e.g. S3_BUCKET)
        region: AWS region of the resource
        account_id: 12 digit AWS account id
        tenant_id: Owning tenant
        requested_by: User or system that asked for the fix
        auto_approve: Skip risk-based approval when no HIGH guardrail failed
        dry_run: Report the would-be change without mutating the resource
        parameters: Remediation specific inputs (policy ARN, CIDR, ...)
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )

    finding_id: str = Field(min_length=1)
    remediation_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    region: str = Field(min_length=1)
    account_id: str
    tenant_id: str = Field(min_length=1)
    requested_by: str = Field(min_length=1)
    auto_approve: bool = False
    dry_run: bool = False
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, v: str) -> str:
        """Account ids are exactly twelve digits."""
        if not _ACCOUNT_ID_PATTERN.match(v):
            raise ValueError("Account ID must be 12 digits")
        return v

    @field_validator("remediation_type", "resource_type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return v.upper()

    @property
    def resource_key(self) -> Tuple[str, str, str]:
        """Key under which at most one active job may exist."""
        return (self.tenant_id, self.resource_id, self.remediation_type)

    @classmethod
    def parse(cls, data: Any) -> "RemediationRequest":
        """
        Validate raw request data.

        Raises:
            ValidationError: Listing every field problem
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError("Invalid remediation request", errors) from e


class SafetyCheck(WireModel):
    """Result of one guardrail predicate."""

    name: str
    passed: bool
    message: str
    severity: Severity
    recommendation: Optional[str] = None


class SafetyCheckResult(WireModel):
    """Ordered guardrail results; passes only if every check passed."""

    checks: List[SafetyCheck] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def failures(self, min_severity: Severity = Severity.LOW) -> List[SafetyCheck]:
        """Failed checks at or above ``min_severity``."""
        return [
            check for check in self.checks
            if not check.passed and check.severity.rank >= min_severity.rank
        ]


class ImpactEstimate(WireModel):
    """Predicted blast radius of a candidate fix."""

    risk_level: RiskLevel
    affected_resources: int = Field(default=1, ge=0)
    downtime: bool = False
    cost_impact: float = 0.0
    description: str = ""
    mitigations: List[str] = Field(default_factory=list)


class ResourceSnapshot(WireModel):
    """Live metadata about a target resource, fetched by its executor."""

    exists: bool = True
    tags: Dict[str, str] = Field(default_factory=dict)
    dependents: int = Field(default=0, ge=0)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ImpactProfile(WireModel):
    """Executor's view of what a change touches, before risk tiering."""

    affected_resources: int = Field(default=1, ge=0)
    downtime: bool = False
    cost_impact: float = 0.0
    description: str = ""
    mitigations: List[str] = Field(default_factory=list)


class RollbackDescriptor(WireModel):
    """Opaque undo payload recorded when a change was applied."""

    executor_kind: str
    before_state: Dict[str, Any] = Field(default_factory=dict)
    instructions: List[str] = Field(default_factory=list)


class Change(WireModel):
    """One resource mutation performed (or simulated) by an executor."""

    action: str
    resource: str
    before: Any = None
    after: Any = None


class RemediationResult(WireModel):
    """Outcome of a fix executor run."""

    success: bool
    message: str
    changes: List[Change] = Field(default_factory=list)
    rollback: Optional[RollbackDescriptor] = None


class RollbackAction(WireModel):
    """One undo step attempted during rollback."""

    action: str
    resource: str
    status: RollbackActionStatus
    error: Optional[str] = None


class RollbackResult(WireModel):
    """Outcome of undoing a recorded change."""

    success: bool
    message: str
    actions: List[RollbackAction] = Field(default_factory=list)
    partial_rollback: bool = False

    @classmethod
    def from_actions(cls, actions: List[RollbackAction]) -> "RollbackResult":
        """Summarise undo steps; partial when some but not all failed."""
        failed = [a for a in actions if a.status == RollbackActionStatus.FAILED]
        partial = 0 < len(failed) < len(actions)
        success = not failed
        if success:
            message = "Rollback completed successfully"
        elif partial:
            message = "Rollback partially completed - some actions failed"
        else:
            message = "Rollback failed"
        return cls(success=success, message=message, actions=actions, partial_rollback=partial)


class RemediationJob(WireModel):
    """
    Durable record of one remediation attempt (the aggregate root).

    Attributes:
        id: Store-generated identifier (None until created)
        request: The submitted request
        status: Lifecycle state
        safety_checks: Guardrail results from the latest evaluation
        estimated_impact: Impact estimate from the latest evaluation
        gate_decision: What the approval gate decided
        result: Executor outcome once the fix ran
        rollback_result: Latest rollback attempt
        error: Failure message for FAILED jobs
        approved_by: Approver of a gated job
        approved_at: When the job was approved
        created_at: Creation timestamp (UTC)
        updated_at: Last write timestamp (UTC)
    """

    id: Optional[str] = None
    request: RemediationRequest
    status: JobStatus = JobStatus.PENDING
    safety_checks: Optional[SafetyCheckResult] = None
    estimated_impact: Optional[ImpactEstimate] = None
    gate_decision: Optional[GateDecision] = None
    result: Optional[RemediationResult] = None
    rollback_result: Optional[RollbackResult] = None
    error: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[misc]
    @property
    def active(self) -> bool:
        return self.status.is_active

    @property
    def resource_key(self) -> Tuple[str, str, str]:
        return self.request.resource_key

    def with_changes(self, patch: Dict[str, Any]) -> "RemediationJob":
        """Return a copy with ``patch`` applied and ``updated_at`` refreshed."""
        return self.model_copy(update={**patch, "updated_at": utc_now()})


class AuditLogEntry(WireModel):
    """Append-only evidence of one decision or state transition."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    job_id: Optional[str]
    tenant_id: str
    correlation_id: str
    actor: str
    event: AuditEvent
    from_status: Optional[JobStatus] = None
    to_status: Optional[JobStatus] = None
    timestamp: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)
