"""
Rollback manager.

Re-invokes the inverse operation of the executor that applied a job. The
executor is resolved from the job's stored resource and remediation types
and must match the kind recorded in the rollback descriptor.
"""

import logging
from typing import List

from ..exceptions import NoRollbackAvailable, ValidationError
from ..models import JobStatus, RemediationJob, RollbackResult
from .executors.base import ExecutorRegistry

logger = logging.getLogger(__name__)


class RollbackManager:
    """Undo applied remediation jobs through their executors."""

    def __init__(self, registry: ExecutorRegistry):
        self.registry = registry

    def feasibility_problems(self, job: RemediationJob) -> List[str]:
        """
        Reasons a job cannot be rolled back; empty when rollback is possible.
        """
        problems = []
        if job.status != JobStatus.APPLIED:
            problems.append(f"job status is {job.status.value}, not APPLIED")
        if job.result is None or job.result.rollback is None:
            problems.append("no rollback descriptor was recorded")
            return problems

        try:
            executor = self.registry.resolve(job.request.resource_type, job.request.remediation_type)
        except ValidationError:
            problems.append(f"no executor registered for {job.request.resource_type}")
            return problems

        if executor.kind != job.result.rollback.executor_kind:
            problems.append(
                f"descriptor was recorded by '{job.result.rollback.executor_kind}', "
                f"current executor is '{executor.kind}'"
            )
        return problems

    def ensure_rollback_available(self, job: RemediationJob) -> None:
        """
        Raises:
            NoRollbackAvailable: If the job cannot be rolled back
        """
        problems = self.feasibility_problems(job)
        if problems:
            raise NoRollbackAvailable(
                f"Rollback not available for job {job.id}: {'; '.join(problems)}",
                {"jobId": job.id, "status": job.status.value, "problems": problems},
            )

    async def rollback(self, job: RemediationJob) -> RollbackResult:
        """
        Undo the changes recorded on an applied job.

        Partial failure is returned as data (``partial_rollback=True``); the
        caller decides how to surface it.
        """
        self.ensure_rollback_available(job)
        executor = self.registry.resolve(job.request.resource_type, job.request.remediation_type)
        descriptor = job.result.rollback

        logger.info(f"Rolling back job {job.id} with executor '{executor.kind}'")
        result = await executor.rollback(descriptor, job.request)

        if result.success:
            logger.info(f"Rollback of job {job.id} succeeded ({len(result.actions)} action(s))")
        elif result.partial_rollback:
            logger.warning(f"Rollback of job {job.id} partially failed: {result.message}")
        else:
            logger.error(f"Rollback of job {job.id} failed: {result.message}")
        return result
