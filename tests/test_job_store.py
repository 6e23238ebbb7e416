"""
Contract tests shared by every job store backend.

The DynamoDB backend runs against moto.
"""
import asyncio

import pytest

from helpers import make_request
from shepherd_remediation.exceptions import ConflictError, InvalidStateTransition, NotFoundError
from shepherd_remediation.models import JobStatus, RemediationJob
from shepherd_remediation.storage import DynamoDBJobStore, InMemoryJobStore, SQLiteJobStore, active_key


@pytest.fixture(params=["memory", "sqlite", "dynamodb"])
def job_store(request, tmp_path, aws_credentials):
    if request.param == "memory":
        yield InMemoryJobStore()
    elif request.param == "sqlite":
        yield SQLiteJobStore(tmp_path / "jobs.db")
    else:
        pytest.importorskip("moto")
        from moto import mock_aws

        with mock_aws():
            store = DynamoDBJobStore(table_name="remediation-jobs-test", region_name="us-east-1")
            store.ensure_table()
            yield store


def new_job(**overrides):
    return RemediationJob(request=make_request(**overrides))


def test_active_key_format():
    job = new_job()

    assert active_key(job) == "tenant-1#audit-logs-bucket#ENABLE_BUCKET_ENCRYPTION"


@pytest.mark.asyncio
async def test_create_and_get(job_store):
    job_id = await job_store.create(new_job())

    job = await job_store.get(job_id)

    assert job.id == job_id
    assert job.status == JobStatus.PENDING
    assert job.request == make_request()


@pytest.mark.asyncio
async def test_get_missing_returns_none(job_store):
    assert await job_store.get("missing") is None


@pytest.mark.asyncio
async def test_create_requires_pending(job_store):
    job = new_job().model_copy(update={"status": JobStatus.APPLIED})

    with pytest.raises(InvalidStateTransition):
        await job_store.create(job)


@pytest.mark.asyncio
async def test_second_active_job_conflicts(job_store):
    await job_store.create(new_job())

    with pytest.raises(ConflictError):
        await job_store.create(new_job(finding_id="finding-2"))

    other_type = await job_store.create(new_job(remediation_type="BLOCK_PUBLIC_ACCESS"))
    assert other_type


@pytest.mark.asyncio
async def test_concurrent_creates_admit_one(job_store):
    if isinstance(job_store, DynamoDBJobStore):
        pytest.skip("moto does not isolate concurrent transactions")
    results = await asyncio.gather(
        *(job_store.create(new_job(finding_id=f"finding-{i}")) for i in range(5)),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, str)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 4


@pytest.mark.asyncio
async def test_update_compare_and_set(job_store):
    job_id = await job_store.create(new_job())

    updated = await job_store.update(
        job_id, {"status": JobStatus.PENDING_APPROVAL}, expected_status=JobStatus.PENDING
    )
    assert updated.status == JobStatus.PENDING_APPROVAL

    with pytest.raises(InvalidStateTransition):
        await job_store.update(job_id, {"status": JobStatus.APPROVED}, expected_status=JobStatus.PENDING)

    assert (await job_store.get(job_id)).status == JobStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_update_rejects_disallowed_transition(job_store):
    job_id = await job_store.create(new_job())

    with pytest.raises(InvalidStateTransition):
        await job_store.update(job_id, {"status": JobStatus.ROLLED_BACK}, expected_status=JobStatus.PENDING)

    assert (await job_store.get(job_id)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_update_missing_job(job_store):
    with pytest.raises(NotFoundError):
        await job_store.update("missing", {"error": "x"}, expected_status=JobStatus.PENDING)


@pytest.mark.asyncio
async def test_field_patch_keeps_status(job_store):
    job_id = await job_store.create(new_job())

    updated = await job_store.update(job_id, {"error": "note"}, expected_status=JobStatus.PENDING)

    assert updated.status == JobStatus.PENDING
    assert (await job_store.get(job_id)).error == "note"


@pytest.mark.asyncio
async def test_terminal_status_releases_key(job_store):
    job_id = await job_store.create(new_job())
    await job_store.update(job_id, {"status": JobStatus.FAILED, "error": "boom"}, expected_status=JobStatus.PENDING)

    second_id = await job_store.create(new_job())

    assert second_id != job_id
    assert [j.id for j in await job_store.find_active_for_resource("tenant-1", "audit-logs-bucket")] == [second_id]


@pytest.mark.asyncio
async def test_find_by_status_and_tenant(job_store):
    first = await job_store.create(new_job(resource_id="bucket-a"))
    second = await job_store.create(new_job(resource_id="bucket-b", tenant_id="tenant-2"))
    for job_id in (first, second):
        await job_store.update(job_id, {"status": JobStatus.PENDING_APPROVAL}, expected_status=JobStatus.PENDING)
    await job_store.create(new_job(resource_id="bucket-c"))

    pending = await job_store.find_by_status(JobStatus.PENDING_APPROVAL)
    assert {j.id for j in pending} == {first, second}
    assert [j.id for j in await job_store.find_by_status(JobStatus.PENDING_APPROVAL, "tenant-2")] == [second]
    assert len(await job_store.find_by_status(JobStatus.PENDING)) == 1


@pytest.mark.asyncio
async def test_sqlite_persists_across_instances(tmp_path):
    path = tmp_path / "jobs.db"
    job_id = await SQLiteJobStore(path).create(new_job())

    reopened = SQLiteJobStore(path)

    assert (await reopened.get(job_id)).request.resource_id == "audit-logs-bucket"
    with pytest.raises(ConflictError):
        await reopened.create(new_job())
