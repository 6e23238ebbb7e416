"""
Job store contract and the shared state-transition guard.

The job store is the single point of mutable shared state. ``create`` is an
atomic create-if-no-active-job for the resource key, and ``update`` is a
compare-and-set on the job's expected current status.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidStateTransition, NotFoundError
from ..models import JobStatus, RemediationJob
from ..utils import new_id

logger = logging.getLogger(__name__)


def active_key(job: RemediationJob) -> str:
    """Lock key for the at-most-one-active-job invariant."""
    tenant_id, resource_id, remediation_type = job.resource_key
    return f"{tenant_id}#{resource_id}#{remediation_type}"


def prepare_new_job(job: RemediationJob) -> RemediationJob:
    """Assign an id to a job about to be created; it must start PENDING."""
    if job.status != JobStatus.PENDING:
        raise InvalidStateTransition(job.id or "<new>", job.status, JobStatus.PENDING)
    return job.model_copy(update={"id": job.id or new_id()})


def apply_patch(
    job: Optional[RemediationJob],
    job_id: str,
    patch: Dict[str, Any],
    expected_status: JobStatus,
) -> RemediationJob:
    """
    Validate a patch against the stored job and the transition table.

    Args:
        job: Currently stored job (None if absent)
        job_id: Job being updated
        patch: Field name -> new value
        expected_status: Status the caller believes the job is in

    Returns:
        The patched job (not yet persisted)

    Raises:
        NotFoundError: If the job does not exist
        InvalidStateTransition: If the job moved on, or the target status
            is not reachable from the expected one
    """
    if job is None:
        raise NotFoundError(f"Remediation job not found: {job_id}")

    target = patch.get("status", expected_status)
    if job.status != expected_status:
        raise InvalidStateTransition(job_id, job.status, target)
    if target != expected_status and not expected_status.can_transition_to(target):
        raise InvalidStateTransition(job_id, expected_status, target)

    return job.with_changes(patch)


class JobStore(ABC):
    """
    Abstract base class for remediation job stores.

    Implementations must make ``create`` and ``update`` atomic with respect
    to concurrent callers.
    """

    @abstractmethod
    async def create(self, job: RemediationJob) -> str:
        """
        Persist a new PENDING job.

        Returns:
            The generated job id

        Raises:
            ConflictError: If an active job exists for the same resource key
            StoreError: If the write failed
        """
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Optional[RemediationJob]:
        """Load a job, or None if it does not exist."""
        pass

    @abstractmethod
    async def update(
        self,
        job_id: str,
        patch: Dict[str, Any],
        expected_status: JobStatus,
    ) -> RemediationJob:
        """
        Apply ``patch`` if the job is still in ``expected_status``.

        Returns:
            The updated job

        Raises:
            NotFoundError: If the job does not exist
            InvalidStateTransition: If the status moved on or the transition
                is not allowed
            StoreError: If the write failed
        """
        pass

    @abstractmethod
    async def find_by_status(self, status: JobStatus, tenant_id: Optional[str] = None) -> List[RemediationJob]:
        """Jobs in ``status``, optionally restricted to one tenant, oldest first."""
        pass

    @abstractmethod
    async def find_active_for_resource(self, tenant_id: str, resource_id: str) -> List[RemediationJob]:
        """Active jobs touching ``resource_id`` for any remediation type."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass
