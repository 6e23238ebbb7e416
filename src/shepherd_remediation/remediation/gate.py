"""
Approval gate: decides between automatic and human-gated execution.

Pure and deterministic; no I/O.
"""

from typing import List, Tuple

from ..models import GateDecision, ImpactEstimate, RemediationRequest, RiskLevel, SafetyCheckResult
from ..policy import RemediationPolicy


def evaluate_gate(
    safety: SafetyCheckResult,
    impact: ImpactEstimate,
    request: RemediationRequest,
    policy: RemediationPolicy,
) -> Tuple[GateDecision, List[str]]:
    """
    Decide whether a fix may run without approval.

    Rules, in order:

    1. A failed guardrail at or above the policy's approval severity
       threshold (HIGH by default) requires approval, even with autoApprove.
    2. A tenant policy gating the remediation type requires approval
       unless the request is a dry run.
    3. ``auto_approve`` applies automatically.
    4. Any risk tier other than LOW requires approval.

    Lower severity guardrail failures are advisory and do not force approval.

    Returns:
        (decision, reasons) where reasons explain a REQUIRE_APPROVAL outcome
    """
    reasons: List[str] = []

    blocking = safety.failures(policy.approval_severity_threshold)
    if blocking:
        names = ", ".join(check.name for check in blocking)
        reasons.append(f"{policy.approval_severity_threshold.value} severity guardrail failed: {names}")

    if not request.dry_run and policy.requires_approval(request.tenant_id, request.remediation_type):
        reasons.append(f"Tenant policy requires approval for {request.remediation_type}")

    if reasons:
        return GateDecision.REQUIRE_APPROVAL, reasons

    if request.auto_approve:
        return GateDecision.AUTO_APPLY, []

    if impact.risk_level != RiskLevel.LOW:
        return GateDecision.REQUIRE_APPROVAL, [f"Risk level is {impact.risk_level.value}"]

    return GateDecision.AUTO_APPLY, []


def gate(
    safety: SafetyCheckResult,
    impact: ImpactEstimate,
    request: RemediationRequest,
    policy: RemediationPolicy,
) -> GateDecision:
    """Decision only; see ``evaluate_gate``."""
    return evaluate_gate(safety, impact, request, policy)[0]
