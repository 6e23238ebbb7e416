"""
Tests for the safety guardrail engine and the default check battery.
"""
import pytest

from helpers import WEEKDAY_MORNING, WEEKEND, FakeExecutor, make_request
from shepherd_remediation.models import RemediationJob, ResourceSnapshot, Severity
from shepherd_remediation.remediation.context import EvaluationContext
from shepherd_remediation.remediation.guardrails import (
    GuardrailCheck,
    GuardrailEngine,
    default_checks,
    looks_like_production,
)
from shepherd_remediation.storage import InMemoryJobStore


def context(executor, request=None, now=WEEKEND, store=None, job_id=None):
    return EvaluationContext(request or make_request(), executor, store=store, job_id=job_id, now=now)


@pytest.fixture
def engine(policy):
    return GuardrailEngine(default_checks(policy))


def check(result, name):
    return next(c for c in result.checks if c.name == name)


@pytest.mark.asyncio
async def test_default_checks_pass_for_ordinary_resource(engine, fake_executor):
    result = await engine.evaluate(context(fake_executor))

    assert result.passed is True
    assert [c.name for c in result.checks] == [
        "Resource Exists",
        "Production Tag",
        "Production Naming",
        "Business Hours",
        "Destructive Operation",
        "Irreversible Operation",
        "No Concurrent Remediation",
    ]


@pytest.mark.asyncio
async def test_snapshot_fetched_once(engine, fake_executor):
    await engine.evaluate(context(fake_executor, now=WEEKDAY_MORNING))

    assert fake_executor.describe_calls == 1


@pytest.mark.asyncio
async def test_missing_resource(engine, fake_executor):
    fake_executor.snapshot = ResourceSnapshot(exists=False)

    result = await engine.evaluate(context(fake_executor))

    exists = check(result, "Resource Exists")
    assert exists.passed is False
    assert exists.severity == Severity.HIGH
    assert exists.recommendation is not None


@pytest.mark.asyncio
async def test_production_tag_is_high_severity(engine, fake_executor):
    fake_executor.snapshot = ResourceSnapshot(tags={"Environment": "Production"})

    result = await engine.evaluate(context(fake_executor))

    tag = check(result, "Production Tag")
    assert tag.passed is False
    assert tag.severity == Severity.HIGH
    assert tag.message == "Production tag detected on resource"


@pytest.mark.asyncio
async def test_production_naming_is_medium_severity(engine, fake_executor):
    request = make_request(resource_id="payments-prod-logs")

    result = await engine.evaluate(context(fake_executor, request))

    naming = check(result, "Production Naming")
    assert naming.passed is False
    assert naming.severity == Severity.MEDIUM
    assert result.failures(Severity.HIGH) == []


@pytest.mark.parametrize(
    "resource_id, expected",
    [
        ("prod-data", True),
        ("data_production", True),
        ("live.site.assets", True),
        ("product-catalog", False),
        ("delivery-logs", False),
        ("reproduce-bucket", False),
    ],
)
def test_looks_like_production(resource_id, expected):
    assert looks_like_production(resource_id) is expected


@pytest.mark.asyncio
async def test_business_hours_only_for_production(engine, fake_executor):
    ordinary = await engine.evaluate(context(fake_executor, now=WEEKDAY_MORNING))
    assert check(ordinary, "Business Hours").passed is True

    fake_executor.snapshot = ResourceSnapshot(tags={"env": "prod"})
    production = await engine.evaluate(context(fake_executor, now=WEEKDAY_MORNING))
    hours = check(production, "Business Hours")
    assert hours.passed is False
    assert hours.severity == Severity.MEDIUM

    weekend = await engine.evaluate(context(fake_executor, now=WEEKEND))
    assert check(weekend, "Business Hours").passed is True


@pytest.mark.asyncio
async def test_destructive_and_irreversible_operations(engine, fake_executor):
    request = make_request(remediation_type="DELETE_RESOURCE")

    result = await engine.evaluate(context(fake_executor, request))

    assert check(result, "Destructive Operation").passed is False
    assert check(result, "Irreversible Operation").passed is False


@pytest.mark.asyncio
async def test_concurrent_remediation_ignores_own_job(engine, fake_executor):
    store = InMemoryJobStore()
    own_id = await store.create(RemediationJob(request=make_request()))

    own = await engine.evaluate(context(fake_executor, store=store, job_id=own_id))
    assert check(own, "No Concurrent Remediation").passed is True

    other = await engine.evaluate(context(
        fake_executor, make_request(remediation_type="BLOCK_PUBLIC_ACCESS"), store=store
    ))
    concurrent = check(other, "No Concurrent Remediation")
    assert concurrent.passed is False
    assert own_id in concurrent.message


@pytest.mark.asyncio
async def test_raising_check_fails_closed(fake_executor):
    async def broken(ctx):
        raise RuntimeError("boom")

    engine = GuardrailEngine([GuardrailCheck("Broken", Severity.LOW, broken)])

    result = await engine.evaluate(context(fake_executor))

    [outcome] = result.checks
    assert outcome.passed is False
    assert outcome.severity == Severity.HIGH
    assert outcome.message == "Check could not be evaluated: boom"


@pytest.mark.asyncio
async def test_describe_error_fails_every_snapshot_check(engine):
    executor = FakeExecutor()
    executor.describe_error = ConnectionError("timeout")

    result = await engine.evaluate(context(executor, now=WEEKDAY_MORNING))

    assert check(result, "Resource Exists").passed is False
    assert check(result, "Production Tag").passed is False
    assert executor.describe_calls == 1


@pytest.mark.asyncio
async def test_register_extends_battery(engine, fake_executor):
    async def advisory(ctx):
        return False, "Owner tag missing", "Tag the resource with an owner"

    engine.register(GuardrailCheck("Owner Tag", Severity.LOW, advisory))

    result = await engine.evaluate(context(fake_executor))

    assert result.checks[-1].name == "Owner Tag"
    assert result.passed is False
    assert result.failures(Severity.MEDIUM) == []
