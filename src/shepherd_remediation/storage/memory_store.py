"""In-process job store for tests and single-process deployments."""
import logging
import threading
from typing import Any, Dict, List, Optional

from ..exceptions import ConflictError
from ..models import JobStatus, RemediationJob
from .base import JobStore, active_key, apply_patch, prepare_new_job

logger = logging.getLogger(__name__)


class InMemoryJobStore(JobStore):
    """
    Dictionary-backed job store.

    A threading lock guards both maps so the store stays consistent when
    shared between event loops (e.g. Flask async views).
    """

    def __init__(self):
        self._jobs: Dict[str, RemediationJob] = {}
        self._active: Dict[str, str] = {}
        self._lock = threading.Lock()

    async def create(self, job: RemediationJob) -> str:
        job = prepare_new_job(job)
        key = active_key(job)
        with self._lock:
            existing = self._active.get(key)
            if existing is not None:
                raise ConflictError(
                    f"Active remediation job {existing} already exists for {key}",
                    {"existingJobId": existing},
                )
            self._jobs[job.id] = job
            self._active[key] = job.id
        logger.debug(f"Created job {job.id} for {key}")
        return job.id

    async def get(self, job_id: str) -> Optional[RemediationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update(self, job_id: str, patch: Dict[str, Any], expected_status: JobStatus) -> RemediationJob:
        with self._lock:
            updated = apply_patch(self._jobs.get(job_id), job_id, patch, expected_status)
            self._jobs[job_id] = updated
            if not updated.active:
                key = active_key(updated)
                if self._active.get(key) == job_id:
                    del self._active[key]
        return updated.model_copy(deep=True)

    async def find_by_status(self, status: JobStatus, tenant_id: Optional[str] = None) -> List[RemediationJob]:
        with self._lock:
            jobs = [
                job.model_copy(deep=True) for job in self._jobs.values()
                if job.status == status and (tenant_id is None or job.request.tenant_id == tenant_id)
            ]
        return sorted(jobs, key=lambda j: j.created_at)

    async def find_active_for_resource(self, tenant_id: str, resource_id: str) -> List[RemediationJob]:
        with self._lock:
            return [
                job.model_copy(deep=True) for job in self._jobs.values()
                if job.active
                and job.request.tenant_id == tenant_id
                and job.request.resource_id == resource_id
            ]
