"""
Tests for the transport-agnostic remediation API handlers.

Verifies status codes, correlation id echo, and error body shapes.
"""
import pytest

from helpers import request_payload
from shepherd_remediation.api import remediation as api
from shepherd_remediation.exceptions import ConflictError, PartialRollbackFailure
from shepherd_remediation.models import RollbackActionStatus


@pytest.mark.asyncio
async def test_apply_low_risk_returns_applied_job(orchestrator):
    status, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")

    assert status == 200
    assert body["correlationId"] == "corr-1"
    assert body["job"]["status"] == "APPLIED"
    assert body["job"]["request"]["resourceId"] == "audit-logs-bucket"


@pytest.mark.asyncio
async def test_correlation_id_generated_when_missing(orchestrator):
    status, body = await api.apply_remediation(orchestrator, request_payload())

    assert status == 200
    assert body["correlationId"].startswith("corr-")


@pytest.mark.asyncio
async def test_invalid_request_is_400(orchestrator):
    payload = request_payload()
    del payload["accountId"]

    status, body = await api.apply_remediation(orchestrator, payload, "corr-1")

    assert status == 400
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["correlationId"] == "corr-1"


@pytest.mark.asyncio
async def test_unsupported_remediation_is_400(orchestrator):
    status, body = await api.apply_remediation(
        orchestrator, request_payload(remediation_type="ENABLE_KEY_ROTATION"), "corr-1"
    )

    assert status == 400


@pytest.mark.asyncio
async def test_request_approval_is_202(orchestrator, approval):
    status, body = await api.request_remediation_approval(orchestrator, request_payload(), "corr-1")

    assert status == 202
    assert body["job"]["status"] == "PENDING_APPROVAL"
    assert approval.requested == [body["job"]["id"]]


@pytest.mark.asyncio
async def test_duplicate_active_job_is_409(orchestrator):
    await api.request_remediation_approval(orchestrator, request_payload(), "corr-1")

    status, body = await api.apply_remediation(orchestrator, request_payload(finding_id="finding-2"), "corr-2")

    assert status == 409
    assert body["error"]["code"] == ConflictError.code


@pytest.mark.asyncio
async def test_approve_then_status_and_audit(orchestrator):
    _, submitted = await api.request_remediation_approval(orchestrator, request_payload(), "corr-1")
    job_id = submitted["job"]["id"]

    status, body = await api.approve_remediation(orchestrator, job_id, "bob", "corr-2")
    assert status == 200
    assert body["job"]["status"] == "APPLIED"
    assert body["job"]["approvedBy"] == "bob"

    status, body = await api.get_remediation_status(orchestrator, job_id, "corr-3")
    assert status == 200
    assert body["job"]["id"] == job_id

    status, body = await api.get_audit_trail(orchestrator, job_id, None, "corr-4")
    assert status == 200
    assert body["jobId"] == job_id
    events = [e["event"] for e in body["entries"]]
    assert events[0] == "JOB_CREATED"
    assert "APPROVED" in events
    assert events[-1] == "APPLIED"


@pytest.mark.asyncio
async def test_approve_applied_job_is_409(orchestrator):
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")

    status, body = await api.approve_remediation(orchestrator, body["job"]["id"], "bob", "corr-2")

    assert status == 409
    assert body["error"]["code"] == "INVALID_STATE_TRANSITION"


@pytest.mark.asyncio
async def test_unknown_job_is_404(orchestrator):
    for status, body in (
        await api.get_remediation_status(orchestrator, "missing", "corr-1"),
        await api.approve_remediation(orchestrator, "missing", "bob", "corr-1"),
        await api.rollback_remediation(orchestrator, "missing", "bob", "corr-1"),
        await api.get_audit_trail(orchestrator, "missing", None, "corr-1"),
    ):
        assert status == 404
        assert body["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_rollback_success(orchestrator):
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")

    status, body = await api.rollback_remediation(orchestrator, body["job"]["id"], "alice", "corr-2")

    assert status == 200
    assert body["partialRollback"] is False
    assert body["job"]["status"] == "ROLLED_BACK"


@pytest.mark.asyncio
async def test_partial_rollback_is_502_and_job_stays_applied(orchestrator, fake_executor):
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")
    fake_executor.rollback_statuses = [RollbackActionStatus.SUCCESS, RollbackActionStatus.FAILED]

    status, body = await api.rollback_remediation(orchestrator, body["job"]["id"], "alice", "corr-2")

    assert status == 502
    assert body["partialRollback"] is True
    assert body["error"]["code"] == PartialRollbackFailure.code
    assert body["job"]["status"] == "APPLIED"
    assert body["job"]["rollbackResult"]["partialRollback"] is True


@pytest.mark.asyncio
async def test_rollback_without_descriptor_is_409(orchestrator, fake_executor):
    fake_executor.with_rollback = False
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")

    status, body = await api.rollback_remediation(orchestrator, body["job"]["id"], "alice", "corr-2")

    assert status == 409
    assert body["error"]["code"] == "NO_ROLLBACK_AVAILABLE"


@pytest.mark.asyncio
async def test_list_pending_filters_by_tenant(orchestrator):
    await api.request_remediation_approval(orchestrator, request_payload(), "corr-1")
    await api.request_remediation_approval(orchestrator, request_payload(tenant_id="tenant-2"), "corr-2")

    status, body = await api.list_pending_remediations(orchestrator, "tenant-2", "corr-3")

    assert status == 200
    assert body["count"] == 1
    assert body["jobs"][0]["request"]["tenantId"] == "tenant-2"


@pytest.mark.asyncio
async def test_rollback_exception_is_502_with_job(orchestrator, fake_executor):
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")
    fake_executor.rollback_error = RuntimeError("socket closed")

    status, body = await api.rollback_remediation(orchestrator, body["job"]["id"], "alice", "corr-2")

    assert status == 502
    assert body["error"]["code"] == "ROLLBACK_FAILURE"
    assert body["partialRollback"] is False
    assert body["job"]["status"] == "APPLIED"
    assert body["job"]["rollbackResult"]["success"] is False


@pytest.mark.asyncio
async def test_invalid_audit_since_is_400(orchestrator):
    _, body = await api.apply_remediation(orchestrator, request_payload(), "corr-1")

    status, body = await api.get_audit_trail(orchestrator, body["job"]["id"], "not-a-date", "corr-2")

    assert status == 400
    assert body["correlationId"] == "corr-2"
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]["errors"] == ["since: invalid timestamp"]


def test_unexpected_error_is_500():
    status, body = api.error_response(RuntimeError("boom"), "corr-1")

    assert status == 500
    assert body == {
        "correlationId": "corr-1",
        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
    }
