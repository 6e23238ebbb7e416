"""
Tests for the audit trail.

Verifies append-only recording and querying for both backends.
"""

import json
from datetime import timedelta

import pytest

from helpers import make_request
from shepherd_remediation.audit import AuditTrail, FileAuditBackend, InMemoryAuditBackend
from shepherd_remediation.models import AuditEvent, JobStatus, RemediationJob
from shepherd_remediation.utils import utc_now


def create_test_job(job_id: str = "job-1") -> RemediationJob:
    """Create a test remediation job."""
    return RemediationJob(id=job_id, request=make_request())


@pytest.fixture(params=["memory", "file"])
def trail(request, tmp_path):
    if request.param == "memory":
        return AuditTrail(InMemoryAuditBackend())
    return AuditTrail(FileAuditBackend(tmp_path / "audit" / "trail.jsonl"))


@pytest.mark.asyncio
async def test_record_builds_entry(trail):
    job = create_test_job()

    entry = await trail.record(
        job, AuditEvent.JOB_CREATED, "alice", "corr-1",
        to_status=JobStatus.PENDING, details={"dryRun": False},
    )

    assert entry.id
    assert entry.job_id == "job-1"
    assert entry.tenant_id == "tenant-1"
    assert entry.correlation_id == "corr-1"
    assert entry.actor == "alice"
    assert entry.from_status is None
    assert entry.to_status == JobStatus.PENDING
    assert entry.details == {"dryRun": False}


@pytest.mark.asyncio
async def test_entries_for_job_in_append_order(trail):
    job, other = create_test_job("job-1"), create_test_job("job-2")
    await trail.record(job, AuditEvent.JOB_CREATED, "alice", "corr-1")
    await trail.record(other, AuditEvent.JOB_CREATED, "alice", "corr-2")
    await trail.record(
        job, AuditEvent.APPLIED, "alice", "corr-1",
        from_status=JobStatus.PENDING, to_status=JobStatus.APPLIED,
    )

    entries = await trail.entries_for_job("job-1")

    assert [e.event for e in entries] == [AuditEvent.JOB_CREATED, AuditEvent.APPLIED]
    assert entries[1].from_status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_entries_since(trail):
    job = create_test_job()
    await trail.record(job, AuditEvent.JOB_CREATED, "alice", "corr-1")

    future = (utc_now() + timedelta(hours=1)).isoformat()
    past = (utc_now() - timedelta(hours=1)).isoformat()

    assert await trail.entries_for_job("job-1", since=future) == []
    assert len(await trail.entries_for_job("job-1", since=past)) == 1


@pytest.mark.asyncio
async def test_file_backend_initialize(tmp_path):
    """Test file backend initialization."""
    file_path = tmp_path / "nested" / "audit.jsonl"
    backend = FileAuditBackend(file_path)

    await backend.initialize()

    assert file_path.exists()


@pytest.mark.asyncio
async def test_file_backend_writes_wire_json(tmp_path):
    file_path = tmp_path / "audit.jsonl"
    trail = AuditTrail(FileAuditBackend(file_path))

    await trail.record(create_test_job(), AuditEvent.APPROVED, "bob", "corr-9")

    [line] = file_path.read_text().splitlines()
    data = json.loads(line)
    assert data["jobId"] == "job-1"
    assert data["correlationId"] == "corr-9"
    assert data["event"] == "APPROVED"


@pytest.mark.asyncio
async def test_file_backend_skips_corrupt_lines(tmp_path):
    file_path = tmp_path / "audit.jsonl"
    backend = FileAuditBackend(file_path)
    trail = AuditTrail(backend)
    await trail.record(create_test_job(), AuditEvent.JOB_CREATED, "alice", "corr-1")
    with file_path.open("a") as f:
        f.write("{not json\n")
    await trail.record(create_test_job(), AuditEvent.FAILED, "alice", "corr-1")

    entries = await backend.query_entries(job_id="job-1")

    assert [e.event for e in entries] == [AuditEvent.JOB_CREATED, AuditEvent.FAILED]


@pytest.mark.asyncio
async def test_query_by_event_and_limit():
    backend = InMemoryAuditBackend()
    trail = AuditTrail(backend)
    for _ in range(3):
        await trail.record(create_test_job(), AuditEvent.SAFETY_EVALUATED, "alice", "corr-1")
    await trail.record(create_test_job(), AuditEvent.APPLIED, "alice", "corr-1")

    assert len(await backend.query_entries(event=AuditEvent.SAFETY_EVALUATED)) == 3
    assert len(await backend.query_entries(limit=2)) == 2
