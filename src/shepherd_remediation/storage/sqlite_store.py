"""
SQLite-backed job store.

Jobs are stored as JSON documents next to the indexed columns the store
queries on. A UNIQUE index on ``active_key`` (NULL once the job leaves the
active states) enforces at most one active job per resource key.
"""
import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..constants import DEFAULT_SQLITE_PATH
from ..exceptions import ConflictError, StoreError
from ..models import JobStatus, RemediationJob
from .base import JobStore, active_key, apply_patch, prepare_new_job

logger = logging.getLogger(__name__)


class SQLiteJobStore(JobStore):
    """
    SQLite storage for remediation jobs.

    Example:
        >>> store = SQLiteJobStore("remediation_jobs.db")
        >>> job_id = await store.create(job)
        >>> pending = await store.find_by_status(JobStatus.PENDING_APPROVAL)
    """

    def __init__(self, db_path: str | Path = DEFAULT_SQLITE_PATH):
        self.db_path = Path(db_path)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS remediation_jobs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    resource_id TEXT NOT NULL,
                    remediation_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    active_key TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    body TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_key
                ON remediation_jobs(active_key)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON remediation_jobs(status, tenant_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_resource
                ON remediation_jobs(tenant_id, resource_id)
            """)

            conn.commit()
            logger.info(f"Job store initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _to_job(row: sqlite3.Row) -> RemediationJob:
        return RemediationJob.model_validate_json(row["body"])

    async def create(self, job: RemediationJob) -> str:
        job = prepare_new_job(job)
        await asyncio.to_thread(self._insert, job)
        return job.id

    def _insert(self, job: RemediationJob) -> None:
        key = active_key(job)
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO remediation_jobs
                        (id, tenant_id, resource_id, remediation_type, status,
                         active_key, created_at, updated_at, body)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.request.tenant_id,
                        job.request.resource_id,
                        job.request.remediation_type,
                        job.status.value,
                        key,
                        job.created_at.isoformat(),
                        job.updated_at.isoformat(),
                        job.model_dump_json(by_alias=True),
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Active remediation job already exists for {key}") from e
        except sqlite3.Error as e:
            raise StoreError(f"Failed to create job {job.id}: {e}") from e

        logger.debug(f"Created job {job.id} for {key}")

    async def get(self, job_id: str) -> Optional[RemediationJob]:
        return await asyncio.to_thread(self._select_one, job_id)

    def _select_one(self, job_id: str) -> Optional[RemediationJob]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT body FROM remediation_jobs WHERE id = ?", (job_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read job {job_id}: {e}") from e
        return self._to_job(row) if row else None

    async def update(self, job_id: str, patch: Dict[str, Any], expected_status: JobStatus) -> RemediationJob:
        return await asyncio.to_thread(self._update, job_id, patch, expected_status)

    def _update(self, job_id: str, patch: Dict[str, Any], expected_status: JobStatus) -> RemediationJob:
        updated = apply_patch(self._select_one(job_id), job_id, patch, expected_status)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE remediation_jobs
                    SET status = ?, active_key = ?, updated_at = ?, body = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        updated.status.value,
                        active_key(updated) if updated.active else None,
                        updated.updated_at.isoformat(),
                        updated.model_dump_json(by_alias=True),
                        job_id,
                        expected_status.value,
                    ),
                )
                conn.commit()
                changed = cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update job {job_id}: {e}") from e

        if changed == 0:
            # Lost the compare-and-set to a concurrent writer
            apply_patch(self._select_one(job_id), job_id, patch, expected_status)
            raise StoreError(f"Concurrent update of job {job_id}")
        return updated

    async def find_by_status(self, status: JobStatus, tenant_id: Optional[str] = None) -> List[RemediationJob]:
        query = "SELECT body FROM remediation_jobs WHERE status = ?"
        params: list = [status.value]
        if tenant_id is not None:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        query += " ORDER BY created_at ASC"
        return await asyncio.to_thread(self._select_many, query, params)

    async def find_active_for_resource(self, tenant_id: str, resource_id: str) -> List[RemediationJob]:
        return await asyncio.to_thread(
            self._select_many,
            "SELECT body FROM remediation_jobs "
            "WHERE tenant_id = ? AND resource_id = ? AND active_key IS NOT NULL",
            [tenant_id, resource_id],
        )

    def _select_many(self, query: str, params: list) -> List[RemediationJob]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query jobs: {e}") from e
        return [self._to_job(row) for row in rows]
