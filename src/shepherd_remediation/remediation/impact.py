"""
Impact estimator.

Predicts the blast radius of a candidate fix from live resource metadata
and the versioned risk policy. Read-only; safe to call during dry runs.
"""

import logging

from ..models import ImpactEstimate, RiskLevel
from ..policy import RemediationPolicy
from .context import EvaluationContext

logger = logging.getLogger(__name__)


class ImpactEstimator:
    """
    Combines the executor's impact profile with the policy's risk tiering.

    If the resource cannot be described or profiled, the estimate fails
    closed to HIGH risk so the job is routed to a human.
    """

    def __init__(self, policy: RemediationPolicy):
        self.policy = policy

    async def estimate(self, ctx: EvaluationContext) -> ImpactEstimate:
        request = ctx.request
        try:
            snapshot = await ctx.snapshot()
            profile = await ctx.executor.estimate_impact(request, snapshot)
        except Exception as e:
            logger.warning(f"Impact estimation failed for {request.resource_id}: {e}", exc_info=True)
            return ImpactEstimate(
                risk_level=RiskLevel.HIGH,
                affected_resources=1,
                description=f"Impact could not be estimated: {e}",
                mitigations=["Inspect the resource manually before approving"],
            )

        risk = self.policy.risk_for(request.remediation_type, request.resource_type, snapshot)
        mitigations = list(profile.mitigations)
        if risk != self.policy.base_risk(request.remediation_type):
            mitigations.append(
                f"Risk raised to {risk.value} by resource criticality (policy {self.policy.version})"
            )

        estimate = ImpactEstimate(
            risk_level=risk,
            affected_resources=profile.affected_resources,
            downtime=profile.downtime,
            cost_impact=profile.cost_impact,
            description=profile.description,
            mitigations=mitigations,
        )
        logger.debug(f"Impact for {request.resource_id}: {risk.value}, {profile.affected_resources} resource(s)")
        return estimate
