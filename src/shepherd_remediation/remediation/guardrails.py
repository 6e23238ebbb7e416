"""
Safety guardrail engine.

Runs an ordered, extensible battery of read-only checks against a request
and the live resource state. Each check declares a severity; the overall
result passes only if every check passed. A check that cannot be evaluated
(for example a transient API error) is recorded as a failed HIGH severity
check, never skipped.

Classes:
    GuardrailCheck: One named predicate with a severity
    GuardrailEngine: Runs checks in order and collects SafetyCheck results

Example:
    >>> engine = GuardrailEngine(default_checks(policy))
    >>> result = await engine.evaluate(EvaluationContext(request, executor, store))
    >>> [c.name for c in result.failures(Severity.HIGH)]
"""

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from ..constants import (
    DEFAULT_BUSINESS_HOURS_END,
    DEFAULT_BUSINESS_HOURS_START,
    DESTRUCTIVE_OPERATIONS,
    IRREVERSIBLE_OPERATIONS,
    PRODUCTION_NAME_INDICATORS,
)
from ..models import SafetyCheck, SafetyCheckResult, Severity
from ..policy import RemediationPolicy
from .context import EvaluationContext

logger = logging.getLogger(__name__)

# (passed, message, recommendation)
CheckOutcome = Tuple[bool, str, Optional[str]]

_PRODUCTION_NAME = re.compile(
    r"(^|[^a-z0-9])(" + "|".join(PRODUCTION_NAME_INDICATORS) + r")([^a-z0-9]|$)"
)


@dataclass
class GuardrailCheck:
    """
    A named, read-only predicate over an evaluation context.

    Attributes:
        name: Display name recorded on the job
        severity: Severity of a failure
        predicate: Coroutine returning (passed, message, recommendation)
    """
    name: str
    severity: Severity
    predicate: Callable[[EvaluationContext], Awaitable[CheckOutcome]]

    async def run(self, ctx: EvaluationContext) -> SafetyCheck:
        try:
            passed, message, recommendation = await self.predicate(ctx)
        except Exception as e:
            logger.warning(f"Guardrail '{self.name}' could not be evaluated: {e}", exc_info=True)
            return SafetyCheck(
                name=self.name,
                passed=False,
                message=f"Check could not be evaluated: {e}",
                severity=Severity.HIGH,
                recommendation="Retry once the resource can be inspected",
            )
        return SafetyCheck(
            name=self.name,
            passed=passed,
            message=message,
            severity=self.severity,
            recommendation=None if passed else recommendation,
        )


class GuardrailEngine:
    """Runs guardrail checks in registration order."""

    def __init__(self, checks: Optional[List[GuardrailCheck]] = None):
        self.checks: List[GuardrailCheck] = list(checks or [])

    def register(self, check: GuardrailCheck) -> None:
        self.checks.append(check)

    async def evaluate(self, ctx: EvaluationContext) -> SafetyCheckResult:
        results = [await check.run(ctx) for check in self.checks]
        result = SafetyCheckResult(checks=results)

        failed = [c.name for c in results if not c.passed]
        if failed:
            logger.info(
                f"Guardrails for {ctx.request.resource_id}: {len(failed)} failed ({', '.join(failed)})"
            )
        else:
            logger.debug(f"Guardrails for {ctx.request.resource_id}: all {len(results)} passed")
        return result


def looks_like_production(resource_id: str) -> bool:
    """Whether a resource name carries a production indicator as a word."""
    return bool(_PRODUCTION_NAME.search(resource_id.lower()))


def resource_exists_check() -> GuardrailCheck:
    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        snapshot = await ctx.snapshot()
        if snapshot.exists:
            return True, f"Resource {ctx.request.resource_id} exists", None
        return (
            False,
            f"Resource {ctx.request.resource_id} not found in {ctx.request.region}",
            "Verify the finding still applies to an existing resource",
        )

    return GuardrailCheck("Resource Exists", Severity.HIGH, predicate)


def production_tag_check(policy: RemediationPolicy) -> GuardrailCheck:
    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        snapshot = await ctx.snapshot()
        if policy.criticality.is_production(snapshot.tags):
            return (
                False,
                "Production tag detected on resource",
                "Have the resource owner approve changes to production resources",
            )
        return True, "No production tags", None

    return GuardrailCheck("Production Tag", Severity.HIGH, predicate)


def production_naming_check() -> GuardrailCheck:
    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        if looks_like_production(ctx.request.resource_id):
            return (
                False,
                f"Resource name {ctx.request.resource_id} suggests a production resource",
                "Confirm the environment with the resource owner",
            )
        return True, "Resource name has no production indicators", None

    return GuardrailCheck("Production Naming", Severity.MEDIUM, predicate)


def business_hours_check(
    policy: RemediationPolicy,
    start_hour: int = DEFAULT_BUSINESS_HOURS_START,
    end_hour: int = DEFAULT_BUSINESS_HOURS_END,
) -> GuardrailCheck:
    """Changes to production resources during weekday business hours (UTC)."""

    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        in_hours = ctx.now.weekday() < 5 and start_hour <= ctx.now.hour < end_hour
        if not in_hours:
            return True, "Outside business hours", None

        snapshot = await ctx.snapshot()
        production = policy.criticality.is_production(snapshot.tags) or looks_like_production(
            ctx.request.resource_id
        )
        if production:
            return (
                False,
                "Change to a production resource during business hours",
                "Schedule the change for a maintenance window",
            )
        return True, "Non-production resource", None

    return GuardrailCheck("Business Hours", Severity.MEDIUM, predicate)


def destructive_operation_check() -> GuardrailCheck:
    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        if ctx.request.remediation_type in DESTRUCTIVE_OPERATIONS:
            return (
                False,
                f"{ctx.request.remediation_type} is a destructive operation",
                "Take a backup before approving",
            )
        return True, "Operation is not destructive", None

    return GuardrailCheck("Destructive Operation", Severity.HIGH, predicate)


def irreversible_operation_check() -> GuardrailCheck:
    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        remediation_type = ctx.request.remediation_type
        if any(marker in remediation_type for marker in IRREVERSIBLE_OPERATIONS):
            return (
                False,
                f"{remediation_type} cannot be rolled back",
                "Confirm the change is intended; no rollback will be available",
            )
        return True, "Operation is reversible", None

    return GuardrailCheck("Irreversible Operation", Severity.HIGH, predicate)


def concurrent_remediation_check() -> GuardrailCheck:
    """Other active jobs touching the same resource (any remediation type)."""

    async def predicate(ctx: EvaluationContext) -> CheckOutcome:
        if ctx.store is None:
            return True, "No job store to consult", None
        active = await ctx.store.find_active_for_resource(ctx.request.tenant_id, ctx.request.resource_id)
        others = [job for job in active if job.id != ctx.job_id]
        if others:
            ids = ", ".join(job.id for job in others)
            return (
                False,
                f"Another remediation is in progress on this resource ({ids})",
                "Wait for the in-flight remediation to finish",
            )
        return True, "No other remediation in progress", None

    return GuardrailCheck("No Concurrent Remediation", Severity.HIGH, predicate)


def default_checks(
    policy: RemediationPolicy,
    business_hours_start: int = DEFAULT_BUSINESS_HOURS_START,
    business_hours_end: int = DEFAULT_BUSINESS_HOURS_END,
) -> List[GuardrailCheck]:
    """The default ordered guardrail battery."""
    return [
        resource_exists_check(),
        production_tag_check(policy),
        production_naming_check(),
        business_hours_check(policy, business_hours_start, business_hours_end),
        destructive_operation_check(),
        irreversible_operation_check(),
        concurrent_remediation_check(),
    ]
