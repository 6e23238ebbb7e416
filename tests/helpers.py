"""
Test doubles and builders shared by the remediation engine tests.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shepherd_remediation.models import (
    Change,
    ImpactProfile,
    RemediationRequest,
    RemediationResult,
    ResourceSnapshot,
    RollbackAction,
    RollbackActionStatus,
    RollbackDescriptor,
    RollbackResult,
)
from shepherd_remediation.remediation.approval import LoggingApprovalWorkflow

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"

# Saturday: outside weekday business hours
WEEKEND = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
# Wednesday 10:00 UTC: inside business hours
WEEKDAY_MORNING = datetime(2024, 6, 5, 10, 0, tzinfo=timezone.utc)


def make_request(**overrides: Any) -> RemediationRequest:
    """Build a valid S3 encryption request, with field overrides."""
    data: Dict[str, Any] = {
        "finding_id": "finding-1",
        "remediation_type": "ENABLE_BUCKET_ENCRYPTION",
        "resource_id": "audit-logs-bucket",
        "resource_type": "S3_BUCKET",
        "region": REGION,
        "account_id": ACCOUNT_ID,
        "tenant_id": "tenant-1",
        "requested_by": "alice",
    }
    data.update(overrides)
    return RemediationRequest(**data)


def request_payload(**overrides: Any) -> Dict[str, Any]:
    """Wire (camelCase) form of ``make_request``."""
    return make_request(**overrides).to_dict()


class FakeExecutor:
    """
    Scriptable executor satisfying the FixExecutor protocol.

    Records every call so tests can assert when the fix ran.
    """

    kind = "fake-bucket"
    resource_type = "S3_BUCKET"
    remediation_types = frozenset({
        "ENABLE_BUCKET_ENCRYPTION",
        "ENABLE_BUCKET_VERSIONING",
        "BLOCK_PUBLIC_ACCESS",
    })

    def __init__(self):
        self.snapshot = ResourceSnapshot(exists=True, tags={"team": "platform"})
        self.describe_error: Optional[Exception] = None
        self.profile = ImpactProfile(affected_resources=1, description="Enables default encryption")
        self.execute_error: Optional[Exception] = None
        self.execute_success = True
        self.with_rollback = True
        self.rollback_statuses: List[RollbackActionStatus] = [RollbackActionStatus.SUCCESS]
        self.rollback_error: Optional[Exception] = None
        self.describe_calls = 0
        self.execute_calls: List[RemediationRequest] = []
        self.rollback_calls: List[RollbackDescriptor] = []

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        self.describe_calls += 1
        await asyncio.sleep(0)
        if self.describe_error is not None:
            raise self.describe_error
        return self.snapshot

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        return self.profile

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        self.execute_calls.append(request)
        if self.execute_error is not None:
            raise self.execute_error
        if not self.execute_success:
            return RemediationResult(success=False, message="Bucket rejected the change")

        changes = [Change(action="PUT_ENCRYPTION", resource=request.resource_id, before=None, after="AES256")]
        if request.dry_run:
            return RemediationResult(success=True, message="Dry run: would enable encryption", changes=changes)
        rollback = None
        if self.with_rollback:
            rollback = RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "PUT_ENCRYPTION", "before": None}]},
                instructions=["Delete bucket encryption"],
            )
        return RemediationResult(success=True, message="Encryption enabled", changes=changes, rollback=rollback)

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        self.rollback_calls.append(descriptor)
        if self.rollback_error is not None:
            raise self.rollback_error
        actions = [
            RollbackAction(
                action=f"UNDO_STEP_{i}",
                resource=request.resource_id,
                status=status,
                error="AccessDenied" if status == RollbackActionStatus.FAILED else None,
            )
            for i, status in enumerate(self.rollback_statuses)
        ]
        return RollbackResult.from_actions(actions)


class FailingApprovalWorkflow(LoggingApprovalWorkflow):
    """Approval channel whose delivery always fails."""

    async def request_approval(self, job, correlation_id):
        raise ConnectionError("approval channel unreachable")
