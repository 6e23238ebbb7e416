"""
Tests for the impact estimator and policy risk tiering.
"""
import pytest

from helpers import make_request
from shepherd_remediation.models import ImpactProfile, ResourceSnapshot, RiskLevel
from shepherd_remediation.remediation.context import EvaluationContext
from shepherd_remediation.remediation.impact import ImpactEstimator


@pytest.fixture
def estimator(policy):
    return ImpactEstimator(policy)


@pytest.mark.asyncio
async def test_low_tier_for_ordinary_bucket(estimator, fake_executor):
    fake_executor.profile = ImpactProfile(affected_resources=1, cost_impact=0.0, description="Enable SSE")

    estimate = await estimator.estimate(EvaluationContext(make_request(), fake_executor))

    assert estimate.risk_level == RiskLevel.LOW
    assert estimate.affected_resources == 1
    assert estimate.description == "Enable SSE"
    assert estimate.mitigations == []


@pytest.mark.asyncio
async def test_production_tag_escalates(estimator, fake_executor):
    fake_executor.snapshot = ResourceSnapshot(tags={"stage": "prod"})

    estimate = await estimator.estimate(EvaluationContext(make_request(), fake_executor))

    assert estimate.risk_level == RiskLevel.MEDIUM
    assert any("policy 2024.1" in m for m in estimate.mitigations)


@pytest.mark.asyncio
async def test_fan_in_escalates(estimator, fake_executor):
    fake_executor.snapshot = ResourceSnapshot(dependents=25)

    request = make_request(remediation_type="BLOCK_PUBLIC_ACCESS")
    estimate = await estimator.estimate(EvaluationContext(request, fake_executor))

    assert estimate.risk_level == RiskLevel.HIGH


@pytest.mark.asyncio
async def test_profile_fields_carried(estimator, fake_executor):
    fake_executor.profile = ImpactProfile(
        affected_resources=3, downtime=True, cost_impact=0.1, mitigations=["Notify owners"]
    )

    estimate = await estimator.estimate(EvaluationContext(make_request(), fake_executor))

    assert estimate.affected_resources == 3
    assert estimate.downtime is True
    assert estimate.cost_impact == pytest.approx(0.1)
    assert estimate.mitigations == ["Notify owners"]


@pytest.mark.asyncio
async def test_estimation_failure_is_high_risk(estimator, fake_executor):
    fake_executor.describe_error = RuntimeError("throttled")

    estimate = await estimator.estimate(EvaluationContext(make_request(), fake_executor))

    assert estimate.risk_level == RiskLevel.HIGH
    assert estimate.description == "Impact could not be estimated: throttled"


@pytest.mark.parametrize(
    "remediation_type, resource_type, snapshot, expected",
    [
        ("ENABLE_BUCKET_ENCRYPTION", "S3_BUCKET", ResourceSnapshot(), RiskLevel.LOW),
        ("ENABLE_KEY_ROTATION", "KMS_KEY", ResourceSnapshot(), RiskLevel.LOW),
        ("ENABLE_LOG_FILE_VALIDATION", "CLOUDTRAIL", ResourceSnapshot(), RiskLevel.LOW),
        ("BLOCK_PUBLIC_ACCESS", "S3_BUCKET", ResourceSnapshot(), RiskLevel.MEDIUM),
        ("ATTACH_SECURITY_POLICY", "IAM_ROLE", ResourceSnapshot(), RiskLevel.HIGH),
        ("RESTRICT_SSH_ACCESS", "SECURITY_GROUP", ResourceSnapshot(), RiskLevel.HIGH),
        ("SOMETHING_NEW", "S3_BUCKET", ResourceSnapshot(), RiskLevel.MEDIUM),
        ("SOMETHING_NEW", "IAM_ROLE", ResourceSnapshot(), RiskLevel.HIGH),
        ("ENABLE_BUCKET_VERSIONING", "S3_BUCKET", ResourceSnapshot(tags={"env": "production"}), RiskLevel.MEDIUM),
        ("BLOCK_PUBLIC_ACCESS", "S3_BUCKET", ResourceSnapshot(tags={"env": "production"}), RiskLevel.HIGH),
        ("ATTACH_SECURITY_POLICY", "IAM_ROLE", ResourceSnapshot(tags={"env": "production"}), RiskLevel.HIGH),
    ],
)
def test_policy_risk_table(policy, remediation_type, resource_type, snapshot, expected):
    assert policy.risk_for(remediation_type, resource_type, snapshot) == expected
