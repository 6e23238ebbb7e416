"""
Append-only audit trail for remediation jobs.

Every state transition and decision the engine makes is appended here as
compliance evidence. Entries are never mutated or deleted by the engine;
operators read them back by job id.
"""

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..constants import DEFAULT_AUDIT_FILE
from ..exceptions import ValidationError
from ..models import AuditEvent, AuditLogEntry, JobStatus, RemediationJob
from ..utils import new_id, parse_timestamp

logger = logging.getLogger(__name__)


def _matches(
    entry: AuditLogEntry,
    job_id: Optional[str],
    event: Optional[AuditEvent],
    since: Optional[datetime],
) -> bool:
    if job_id is not None and entry.job_id != job_id:
        return False
    if event is not None and entry.event != event:
        return False
    if since is not None and entry.timestamp < since:
        return False
    return True


class AuditBackend(ABC):
    """Abstract base class for audit backends."""

    async def initialize(self) -> None:
        """Initialize the backend."""
        pass

    @abstractmethod
    async def write_entry(self, entry: AuditLogEntry) -> None:
        """Append an audit entry."""
        pass

    @abstractmethod
    async def query_entries(
        self,
        job_id: Optional[str] = None,
        event: Optional[AuditEvent] = None,
        since: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[AuditLogEntry]:
        """Read entries back in append order."""
        pass

    async def close(self) -> None:
        """Close backend connections."""
        pass


class InMemoryAuditBackend(AuditBackend):
    """Audit entries held in a list; for tests and single-process use."""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []

    async def write_entry(self, entry: AuditLogEntry) -> None:
        self.entries.append(entry)

    async def query_entries(
        self,
        job_id: Optional[str] = None,
        event: Optional[AuditEvent] = None,
        since: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[AuditLogEntry]:
        matched = [e for e in self.entries if _matches(e, job_id, event, since)]
        return matched[:limit]


class FileAuditBackend(AuditBackend):
    """
    File-based audit backend.

    Stores audit entries in JSONL format, one entry per line.
    """

    def __init__(self, file_path: str | Path = DEFAULT_AUDIT_FILE):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    async def initialize(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self.file_path.touch()

        logger.info(f"File audit backend initialized: {self.file_path}")

    def _append_line(self, line: str) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self.file_path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def write_entry(self, entry: AuditLogEntry) -> None:
        line = entry.model_dump_json(by_alias=True)
        try:
            await asyncio.to_thread(self._append_line, line)
        except OSError as e:
            logger.error(f"Failed to write audit entry: {e}")
            raise

    def _read_entries(self) -> List[AuditLogEntry]:
        entries = []
        if not self.file_path.exists():
            return entries

        with self.file_path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditLogEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, PydanticValidationError) as e:
                    logger.warning(f"Skipping invalid audit entry at line {line_no}: {e}")
        return entries

    async def query_entries(
        self,
        job_id: Optional[str] = None,
        event: Optional[AuditEvent] = None,
        since: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[AuditLogEntry]:
        try:
            entries = await asyncio.to_thread(self._read_entries)
        except OSError as e:
            logger.error(f"Failed to query audit entries: {e}")
            raise

        matched = [e for e in entries if _matches(e, job_id, event, since)]
        return matched[:limit]


class AuditTrail:
    """
    Audit trail writing through a pluggable backend.

    Example:
        >>> trail = AuditTrail(FileAuditBackend("audit.jsonl"))
        >>> await trail.initialize()
        >>> await trail.record(job, AuditEvent.APPLIED, actor="alice",
        ...                    correlation_id="corr-1", from_status=JobStatus.PENDING,
        ...                    to_status=JobStatus.APPLIED)
    """

    def __init__(self, backend: Optional[AuditBackend] = None):
        self.backend = backend or InMemoryAuditBackend()

    async def initialize(self) -> None:
        await self.backend.initialize()

    async def append(self, entry: AuditLogEntry) -> None:
        """Append an entry."""
        await self.backend.write_entry(entry)

    async def record(
        self,
        job: RemediationJob,
        event: AuditEvent,
        actor: str,
        correlation_id: str,
        from_status: Optional[JobStatus] = None,
        to_status: Optional[JobStatus] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Build and append an entry for ``job``."""
        entry = AuditLogEntry(
            id=new_id(),
            job_id=job.id,
            tenant_id=job.request.tenant_id,
            correlation_id=correlation_id,
            actor=actor,
            event=event,
            from_status=from_status,
            to_status=to_status,
            details=details or {},
        )
        await self.append(entry)
        return entry

    async def entries_for_job(self, job_id: str, since: Optional[Any] = None) -> List[AuditLogEntry]:
        """
        Entries for one job in append order.

        Args:
            job_id: Job to read evidence for
            since: Optional lower bound (datetime or date string)

        Raises:
            ValidationError: If ``since`` is not a timestamp
        """
        since_dt = None
        if since is not None:
            try:
                since_dt = parse_timestamp(since)
            except ValueError as e:
                raise ValidationError(f"Invalid 'since' timestamp: {since!r}", ["since: invalid timestamp"]) from e
        return await self.backend.query_entries(job_id=job_id, since=since_dt)

    async def close(self) -> None:
        await self.backend.close()
