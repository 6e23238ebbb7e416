"""Per-run evaluation context shared by guardrails and the impact estimator."""

from datetime import datetime
from typing import Optional

from ..models import RemediationRequest, ResourceSnapshot
from ..storage.base import JobStore
from ..utils import utc_now
from .executors.base import FixExecutor


class EvaluationContext:
    """
    Inputs for one guardrail + impact evaluation.

    The live resource snapshot is fetched through the executor at most once
    per run; a failed fetch is remembered and re-raised to every caller.

    Attributes:
        request: Request under evaluation
        executor: Executor resolved for the request
        store: Job store, for checks that look at other jobs
        job_id: Id of the job being evaluated (excluded from concurrency checks)
        now: Evaluation time (UTC)
    """

    def __init__(
        self,
        request: RemediationRequest,
        executor: FixExecutor,
        store: Optional[JobStore] = None,
        job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        self.request = request
        self.executor = executor
        self.store = store
        self.job_id = job_id
        self.now = now or utc_now()
        self._snapshot: Optional[ResourceSnapshot] = None
        self._snapshot_error: Optional[Exception] = None

    async def snapshot(self) -> ResourceSnapshot:
        if self._snapshot_error is not None:
            raise self._snapshot_error
        if self._snapshot is None:
            try:
                self._snapshot = await self.executor.describe(self.request)
            except Exception as e:
                self._snapshot_error = e
                raise
        return self._snapshot
