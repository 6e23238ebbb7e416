"""
Remediation orchestrator.

Entry point of the engine. Owns the job lifecycle::

    PENDING -> PENDING_APPROVAL -> APPROVED -> APPLIED -> ROLLED_BACK
       |                              |
       +-> APPLIED / FAILED           +-> FAILED

Each caller-facing operation takes an explicit ``correlation_id`` (one is
generated when omitted) that flows into logs and audit entries. The
orchestrator performs no retries; downstream retries belong to executors.

Classes:
    RemediationOrchestrator: Caller-facing operations over the job store

Example:
    >>> orchestrator = build_orchestrator(EngineConfig.load())
    >>> job = await orchestrator.apply_remediation(request)
    >>> if job.status == JobStatus.PENDING_APPROVAL:
    ...     job = await orchestrator.approve_remediation(job.id, approver="alice")
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..audit import AuditTrail
from ..exceptions import (
    InvalidStateTransition,
    NoRollbackAvailable,
    NotFoundError,
    PartialRollbackFailure,
    RemediationEngineError,
    RollbackFailure,
)
from ..logging_context import ContextualLogger, bind_logger
from ..models import (
    AuditEvent,
    AuditLogEntry,
    GateDecision,
    ImpactEstimate,
    JobStatus,
    RemediationJob,
    RemediationRequest,
    RemediationResult,
    RollbackResult,
    SafetyCheckResult,
)
from ..policy import RemediationPolicy, load_policy
from ..storage.base import JobStore
from ..utils import new_correlation_id, utc_now
from .approval import ApprovalWorkflow, LoggingApprovalWorkflow
from .context import EvaluationContext
from .executors.base import ExecutorRegistry, FixExecutor
from .gate import evaluate_gate
from .guardrails import GuardrailEngine, default_checks
from .impact import ImpactEstimator
from .rollback import RollbackManager

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class RemediationOrchestrator:
    """
    Coordinates guardrails, impact estimation, the approval gate, fix
    execution and rollback for remediation jobs.

    Args:
        store: Job store (single point of shared mutable state)
        registry: Fix executor registry
        audit: Audit trail
        policy: Risk policy (bundled default when None)
        guardrails: Guardrail engine (default battery when None)
        estimator: Impact estimator
        approval: Approval notification channel
        rollback_manager: Rollback manager
        clock: Callable returning the current UTC time
    """

    def __init__(
        self,
        store: JobStore,
        registry: ExecutorRegistry,
        audit: Optional[AuditTrail] = None,
        policy: Optional[RemediationPolicy] = None,
        guardrails: Optional[GuardrailEngine] = None,
        estimator: Optional[ImpactEstimator] = None,
        approval: Optional[ApprovalWorkflow] = None,
        rollback_manager: Optional[RollbackManager] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.audit = audit or AuditTrail()
        self.policy = policy or load_policy()
        self.guardrails = guardrails or GuardrailEngine(default_checks(self.policy))
        self.estimator = estimator or ImpactEstimator(self.policy)
        self.approval = approval or LoggingApprovalWorkflow()
        self.rollback_manager = rollback_manager or RollbackManager(registry)
        self.clock = clock

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def apply_remediation(
        self,
        request: Union[RemediationRequest, Dict[str, Any]],
        correlation_id: Optional[str] = None,
    ) -> RemediationJob:
        """
        Create a job and either apply the fix now or route it to approval.

        Raises:
            ValidationError: Malformed request or unsupported remediation
            ConflictError: An active job exists for the same resource key
        """
        return await self._submit(request, correlation_id, force_approval=False)

    async def request_remediation_approval(
        self,
        request: Union[RemediationRequest, Dict[str, Any]],
        correlation_id: Optional[str] = None,
    ) -> RemediationJob:
        """Like ``apply_remediation`` but always routes to PENDING_APPROVAL."""
        return await self._submit(request, correlation_id, force_approval=True)

    async def approve_remediation(
        self,
        job_id: str,
        approver: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> RemediationJob:
        """
        Approve a gated job and execute its fix.

        Live resource state is re-evaluated before execution since approval
        may arrive long after the original estimate.

        Raises:
            NotFoundError: Unknown job id
            InvalidStateTransition: Job is not PENDING_APPROVAL
        """
        correlation_id = new_correlation_id(correlation_id)
        job = await self._load(job_id)
        approver = approver or SYSTEM_ACTOR
        log = bind_logger(logger, job.request.tenant_id, correlation_id, job_id, actor=approver)

        if job.status != JobStatus.PENDING_APPROVAL:
            log.warning(f"Cannot approve job in status {job.status.value}")
            raise InvalidStateTransition(job_id, job.status, JobStatus.APPROVED)

        executor = self.registry.resolve(job.request.resource_type, job.request.remediation_type)

        job = await self.store.update(
            job_id,
            {"status": JobStatus.APPROVED, "approved_by": approver, "approved_at": self.clock()},
            expected_status=JobStatus.PENDING_APPROVAL,
        )
        log.info("Remediation approved")
        await self.audit.record(
            job, AuditEvent.APPROVED, approver, correlation_id,
            from_status=JobStatus.PENDING_APPROVAL, to_status=JobStatus.APPROVED,
        )

        try:
            safety, impact = await self._evaluate(job, executor)
            job = await self.store.update(
                job_id,
                {"safety_checks": safety, "estimated_impact": impact},
                expected_status=JobStatus.APPROVED,
            )
            await self._audit_evaluation(job, approver, correlation_id, phase="pre-execution")
        except Exception as e:
            await self._abandon(job, JobStatus.APPROVED, e, approver, correlation_id, log)
            raise

        if not safety.passed:
            log.warning(
                f"Executing approved job despite failed checks: "
                f"{', '.join(c.name for c in safety.failures())}"
            )
        return await self._execute(job, executor, JobStatus.APPROVED, approver, correlation_id, log)

    async def rollback_remediation(
        self,
        job_id: str,
        actor: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> RemediationJob:
        """
        Undo an applied job.

        Raises:
            NotFoundError: Unknown job id
            NoRollbackAvailable: Job is not APPLIED or has no descriptor
            PartialRollbackFailure: Some changes were undone, others not;
                the job stays APPLIED with the outcome recorded
            RollbackFailure: Nothing could be undone; the job stays APPLIED
        """
        correlation_id = new_correlation_id(correlation_id)
        job = await self._load(job_id)
        actor = actor or SYSTEM_ACTOR
        log = bind_logger(logger, job.request.tenant_id, correlation_id, job_id, actor=actor)

        self.rollback_manager.ensure_rollback_available(job)
        log.info("Rolling back remediation")
        error: Optional[Exception] = None
        try:
            result = await self.rollback_manager.rollback(job)
        except NoRollbackAvailable:
            raise
        except Exception as e:
            log.exception(f"Rollback raised {type(e).__name__}")
            error = e
            result = RollbackResult(success=False, message=f"Rollback raised {type(e).__name__}: {e}")

        if result.success:
            job = await self._persist(
                job, {"status": JobStatus.ROLLED_BACK, "rollback_result": result},
                JobStatus.APPLIED, actor, correlation_id, log,
            )
            await self.audit.record(
                job, AuditEvent.ROLLED_BACK, actor, correlation_id,
                from_status=JobStatus.APPLIED, to_status=JobStatus.ROLLED_BACK,
                details={"actions": [a.to_dict() for a in result.actions]},
            )
            log.info("Remediation rolled back")
            return job

        job = await self._persist(job, {"rollback_result": result}, JobStatus.APPLIED, actor, correlation_id, log)
        event = AuditEvent.ROLLBACK_PARTIAL if result.partial_rollback else AuditEvent.ROLLBACK_FAILED
        await self.audit.record(
            job, event, actor, correlation_id,
            from_status=JobStatus.APPLIED, to_status=JobStatus.APPLIED,
            details={
                "message": result.message,
                "partialRollback": result.partial_rollback,
                "actions": [a.to_dict() for a in result.actions],
                **({"error": str(error), "errorType": type(error).__name__} if error is not None else {}),
            },
        )

        if result.partial_rollback:
            log.error(f"Partial rollback: {result.message}")
            raise PartialRollbackFailure(
                f"Rollback of job {job_id} partially failed; job remains APPLIED",
                job=job, rollback_result=result,
            )
        log.error(f"Rollback failed: {result.message}")
        raise RollbackFailure(
            f"Rollback of job {job_id} failed; job remains APPLIED",
            job=job, rollback_result=result,
        ) from error

    async def get_remediation_status(self, job_id: str) -> RemediationJob:
        """
        Read a job. Never mutates state or the audit trail.

        Raises:
            NotFoundError: Unknown job id
        """
        return await self._load(job_id)

    async def list_pending_remediations(self, tenant_id: Optional[str] = None) -> List[RemediationJob]:
        """Jobs awaiting approval, optionally for one tenant, oldest first."""
        return await self.store.find_by_status(JobStatus.PENDING_APPROVAL, tenant_id)

    async def get_audit_trail(self, job_id: str, since: Optional[Any] = None) -> List[AuditLogEntry]:
        """
        Audit evidence for a job.

        Raises:
            NotFoundError: Unknown job id
        """
        await self._load(job_id)
        return await self.audit.entries_for_job(job_id, since=since)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, job_id: str) -> RemediationJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Remediation job not found: {job_id}", {"jobId": job_id})
        return job

    async def _submit(
        self,
        request: Union[RemediationRequest, Dict[str, Any]],
        correlation_id: Optional[str],
        force_approval: bool,
    ) -> RemediationJob:
        correlation_id = new_correlation_id(correlation_id)
        if not isinstance(request, RemediationRequest):
            request = RemediationRequest.parse(request)

        actor = request.requested_by
        log = bind_logger(logger, request.tenant_id, correlation_id, actor=actor)
        executor = self.registry.resolve(request.resource_type, request.remediation_type)

        job_id = await self.store.create(RemediationJob(request=request))
        job = await self._load(job_id)
        log = log.bind(job_id=job_id)
        log.info(
            f"Created job for {request.remediation_type} on {request.resource_type} "
            f"{request.resource_id} (dry_run={request.dry_run}, auto_approve={request.auto_approve})"
        )
        await self.audit.record(
            job, AuditEvent.JOB_CREATED, actor, correlation_id,
            to_status=JobStatus.PENDING,
            details={"findingId": request.finding_id, "dryRun": request.dry_run},
        )

        try:
            safety, impact = await self._evaluate(job, executor)
            decision, reasons = evaluate_gate(safety, impact, request, self.policy)
            if force_approval and decision == GateDecision.AUTO_APPLY:
                decision = GateDecision.REQUIRE_APPROVAL
                reasons = ["Approval explicitly requested"]

            job = await self.store.update(
                job_id,
                {"safety_checks": safety, "estimated_impact": impact, "gate_decision": decision},
                expected_status=JobStatus.PENDING,
            )
            await self._audit_evaluation(job, actor, correlation_id, phase="submission", reasons=reasons)
            log.info(f"Gate decision {decision.value} (risk {impact.risk_level.value})")

            if decision == GateDecision.REQUIRE_APPROVAL:
                job = await self.store.update(
                    job_id, {"status": JobStatus.PENDING_APPROVAL}, expected_status=JobStatus.PENDING
                )
                await self.audit.record(
                    job, AuditEvent.APPROVAL_REQUESTED, actor, correlation_id,
                    from_status=JobStatus.PENDING, to_status=JobStatus.PENDING_APPROVAL,
                    details={"reasons": reasons},
                )
        except Exception as e:
            await self._abandon(job, JobStatus.PENDING, e, actor, correlation_id, log)
            raise

        if job.status == JobStatus.PENDING_APPROVAL:
            await self._notify_approvers(job, actor, correlation_id, log)
            return job

        return await self._execute(job, executor, JobStatus.PENDING, actor, correlation_id, log)

    async def _evaluate(
        self, job: RemediationJob, executor: FixExecutor
    ) -> Tuple[SafetyCheckResult, ImpactEstimate]:
        ctx = EvaluationContext(job.request, executor, store=self.store, job_id=job.id, now=self.clock())
        safety = await self.guardrails.evaluate(ctx)
        impact = await self.estimator.estimate(ctx)
        return safety, impact

    async def _audit_evaluation(
        self,
        job: RemediationJob,
        actor: str,
        correlation_id: str,
        phase: str,
        reasons: Optional[List[str]] = None,
    ) -> None:
        details: Dict[str, Any] = {
            "phase": phase,
            "policyVersion": self.policy.version,
            "passed": job.safety_checks.passed if job.safety_checks else None,
            "failedChecks": [
                {"name": c.name, "severity": c.severity.value, "message": c.message}
                for c in (job.safety_checks.failures() if job.safety_checks else [])
            ],
            "riskLevel": job.estimated_impact.risk_level.value if job.estimated_impact else None,
        }
        if job.gate_decision is not None:
            details["gateDecision"] = job.gate_decision.value
        if reasons:
            details["reasons"] = reasons
        await self.audit.record(job, AuditEvent.SAFETY_EVALUATED, actor, correlation_id, details=details)

    async def _notify_approvers(
        self, job: RemediationJob, actor: str, correlation_id: str, log: ContextualLogger
    ) -> None:
        try:
            await self.approval.request_approval(job, correlation_id)
        except Exception as e:
            log.warning(f"Approval notification failed: {e}", exc_info=True)
            await self.audit.record(
                job, AuditEvent.APPROVAL_NOTIFICATION_FAILED, actor, correlation_id,
                details={"error": str(e), "channel": type(self.approval).__name__},
            )

    async def _execute(
        self,
        job: RemediationJob,
        executor: FixExecutor,
        from_status: JobStatus,
        actor: str,
        correlation_id: str,
        log: ContextualLogger,
    ) -> RemediationJob:
        """Run the fix; executor failure is final for the job."""
        result: Optional[RemediationResult] = None
        error: Optional[str] = None
        error_details: Dict[str, Any] = {}

        log.info(f"Executing {job.request.remediation_type} with executor '{executor.kind}'")
        try:
            result = await executor.execute(job.request)
        except Exception as e:
            log.error(f"Executor failed: {e}", exc_info=not isinstance(e, RemediationEngineError))
            error = str(e)
            error_details = getattr(e, "details", {}) or {}
        else:
            if not result.success:
                error = result.message

        if error is None:
            patch: Dict[str, Any] = {"status": JobStatus.APPLIED, "result": result}
            event = AuditEvent.APPLIED
        else:
            patch = {"status": JobStatus.FAILED, "result": result, "error": error}
            event = AuditEvent.FAILED

        job = await self._persist(job, patch, from_status, actor, correlation_id, log)

        details: Dict[str, Any] = {"dryRun": job.request.dry_run}
        if result is not None:
            details.update({
                "message": result.message,
                "changes": [c.to_dict() for c in result.changes],
                "rollbackAvailable": result.rollback is not None,
            })
        if error is not None:
            details["error"] = error
            if error_details:
                details["errorDetails"] = error_details
        await self.audit.record(
            job, event, actor, correlation_id,
            from_status=from_status, to_status=patch["status"], details=details,
        )

        if error is None:
            log.info(f"Remediation applied: {result.message}")
        else:
            log.error(f"Remediation failed: {error}")
        return job

    async def _persist(
        self,
        job: RemediationJob,
        patch: Dict[str, Any],
        expected_status: JobStatus,
        actor: str,
        correlation_id: str,
        log: ContextualLogger,
    ) -> RemediationJob:
        """Write a patch; on failure audit the intended transition and re-raise."""
        try:
            return await self.store.update(job.id, patch, expected_status=expected_status)
        except RemediationEngineError as e:
            target = patch.get("status", expected_status)
            log.error(f"Failed to persist transition to {target.value}: {e}")
            await self.audit.record(
                job, AuditEvent.PERSISTENCE_FAILED, actor, correlation_id,
                from_status=expected_status, to_status=target,
                details={
                    "error": str(e),
                    "intendedPatch": {
                        k: v.to_dict() if hasattr(v, "to_dict") else getattr(v, "value", v)
                        for k, v in patch.items()
                    },
                },
            )
            raise

    async def _abandon(
        self,
        job: RemediationJob,
        from_status: JobStatus,
        error: Exception,
        actor: str,
        correlation_id: str,
        log: ContextualLogger,
    ) -> None:
        """Mark a job FAILED after an unexpected error so it releases its resource key."""
        log.error(f"Remediation aborted: {error}")
        try:
            job = await self.store.update(
                job.id, {"status": JobStatus.FAILED, "error": str(error)}, expected_status=from_status
            )
        except RemediationEngineError as store_error:
            log.error(f"Could not mark job FAILED: {store_error}")
            await self.audit.record(
                job, AuditEvent.PERSISTENCE_FAILED, actor, correlation_id,
                from_status=from_status, to_status=JobStatus.FAILED,
                details={"error": str(store_error), "cause": str(error)},
            )
            return
        await self.audit.record(
            job, AuditEvent.FAILED, actor, correlation_id,
            from_status=from_status, to_status=JobStatus.FAILED,
            details={"error": str(error)},
        )
