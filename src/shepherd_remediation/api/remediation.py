"""
Remediation API handlers.

Transport-agnostic: each handler takes an orchestrator plus already-decoded
inputs and returns ``(http_status, body)``. Every body carries the
``correlationId`` of the call so clients can find the matching log lines and
audit entries.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..exceptions import RemediationEngineError, RollbackFailure
from ..logging_context import bind_logger
from ..remediation.orchestrator import RemediationOrchestrator
from ..utils import new_correlation_id

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, Any]]


def error_response(error: Exception, correlation_id: str) -> Response:
    """
    Map an exception to a status code and error body.

    Args:
        error: Raised exception
        correlation_id: Correlation id of the failed call

    Returns:
        Tuple of (http_status, body)
    """
    if isinstance(error, RemediationEngineError):
        body: Dict[str, Any] = {"correlationId": correlation_id, "error": error.to_dict()}
        if isinstance(error, RollbackFailure):
            body["partialRollback"] = error.partial_rollback
            if error.job is not None:
                body["job"] = error.job.to_dict()
        return error.http_status, body

    logger.error(f"Unhandled error [correlation_id={correlation_id}]: {error}", exc_info=True)
    return 500, {
        "correlationId": correlation_id,
        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
    }


async def _handle(
    operation: str,
    call: Callable[[str], Awaitable[Any]],
    correlation_id: Optional[str],
    success_status: int = 200,
) -> Response:
    correlation_id = new_correlation_id(correlation_id)
    log = bind_logger(logger, correlation_id=correlation_id)
    log.debug(f"{operation} called")
    try:
        result = await call(correlation_id)
    except Exception as e:
        status, body = error_response(e, correlation_id)
        log.info(f"{operation} -> {status}")
        return status, body
    log.info(f"{operation} -> {success_status}")
    return success_status, {"correlationId": correlation_id, **result}


async def apply_remediation(
    orchestrator: RemediationOrchestrator,
    request_data: Any,
    correlation_id: Optional[str] = None,
) -> Response:
    """Submit a remediation; 200 with the job (APPLIED, FAILED or PENDING_APPROVAL)."""
    async def call(cid: str) -> Dict[str, Any]:
        job = await orchestrator.apply_remediation(request_data, correlation_id=cid)
        return {"job": job.to_dict()}

    return await _handle("apply_remediation", call, correlation_id)


async def request_remediation_approval(
    orchestrator: RemediationOrchestrator,
    request_data: Any,
    correlation_id: Optional[str] = None,
) -> Response:
    """Submit a remediation for approval; 202 with the PENDING_APPROVAL job."""
    async def call(cid: str) -> Dict[str, Any]:
        job = await orchestrator.request_remediation_approval(request_data, correlation_id=cid)
        return {"job": job.to_dict()}

    return await _handle("request_remediation_approval", call, correlation_id, success_status=202)


async def approve_remediation(
    orchestrator: RemediationOrchestrator,
    job_id: str,
    approver: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Response:
    async def call(cid: str) -> Dict[str, Any]:
        job = await orchestrator.approve_remediation(job_id, approver=approver, correlation_id=cid)
        return {"job": job.to_dict()}

    return await _handle("approve_remediation", call, correlation_id)


async def rollback_remediation(
    orchestrator: RemediationOrchestrator,
    job_id: str,
    actor: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Response:
    """
    Roll back an applied job.

    A partial rollback answers 502 with ``partialRollback: true`` and the job,
    which stays APPLIED.
    """
    async def call(cid: str) -> Dict[str, Any]:
        job = await orchestrator.rollback_remediation(job_id, actor=actor, correlation_id=cid)
        return {"job": job.to_dict(), "partialRollback": False}

    return await _handle("rollback_remediation", call, correlation_id)


async def get_remediation_status(
    orchestrator: RemediationOrchestrator,
    job_id: str,
    correlation_id: Optional[str] = None,
) -> Response:
    async def call(cid: str) -> Dict[str, Any]:
        job = await orchestrator.get_remediation_status(job_id)
        return {"job": job.to_dict()}

    return await _handle("get_remediation_status", call, correlation_id)


async def list_pending_remediations(
    orchestrator: RemediationOrchestrator,
    tenant_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Response:
    async def call(cid: str) -> Dict[str, Any]:
        jobs = await orchestrator.list_pending_remediations(tenant_id)
        return {"jobs": [job.to_dict() for job in jobs], "count": len(jobs)}

    return await _handle("list_pending_remediations", call, correlation_id)


async def get_audit_trail(
    orchestrator: RemediationOrchestrator,
    job_id: str,
    since: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Response:
    async def call(cid: str) -> Dict[str, Any]:
        entries = await orchestrator.get_audit_trail(job_id, since=since)
        return {"jobId": job_id, "entries": [entry.to_dict() for entry in entries]}

    return await _handle("get_audit_trail", call, correlation_id)
