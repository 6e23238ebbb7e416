"""
Approval workflow channels.

Requesting approval is a fire-and-forget notification: resolution only
arrives through a later ``approve_remediation`` call. Channels raise on
delivery failure; the orchestrator logs and audits the failure without
failing the caller.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from ..models import RemediationJob, RiskLevel
from ..retry import RetryConfig, retry_sync
from .executors.base import AwsClients

logger = logging.getLogger(__name__)

APPROVERS_BY_RISK: Dict[RiskLevel, List[str]] = {
    RiskLevel.LOW: ["security-team"],
    RiskLevel.MEDIUM: ["security-team", "team-lead"],
    RiskLevel.HIGH: ["security-team", "team-lead", "security-manager"],
}

_RISK_COLORS = {
    RiskLevel.LOW: "#2EB67D",
    RiskLevel.MEDIUM: "#ECB22E",
    RiskLevel.HIGH: "#E01E5A",
}


def required_approvers(job: RemediationJob) -> List[str]:
    """Approver groups for a job, by estimated risk (HIGH when unknown)."""
    risk = job.estimated_impact.risk_level if job.estimated_impact else RiskLevel.HIGH
    return list(APPROVERS_BY_RISK[risk])


def approval_summary(job: RemediationJob, correlation_id: str) -> Dict[str, Any]:
    """Channel-neutral description of a pending approval."""
    request = job.request
    failed = [c.name for c in job.safety_checks.failures()] if job.safety_checks else []
    return {
        "jobId": job.id,
        "correlationId": correlation_id,
        "tenantId": request.tenant_id,
        "findingId": request.finding_id,
        "resourceId": request.resource_id,
        "resourceType": request.resource_type,
        "remediationType": request.remediation_type,
        "region": request.region,
        "accountId": request.account_id,
        "requestedBy": request.requested_by,
        "riskLevel": job.estimated_impact.risk_level.value if job.estimated_impact else None,
        "impact": job.estimated_impact.description if job.estimated_impact else None,
        "failedChecks": failed,
        "approvers": required_approvers(job),
    }


class ApprovalWorkflow(ABC):
    """Abstract base class for approval notification channels."""

    @abstractmethod
    async def request_approval(self, job: RemediationJob, correlation_id: str) -> None:
        """
        Notify approvers that ``job`` awaits approval.

        Raises:
            Exception: Any delivery failure
        """
        pass


class LoggingApprovalWorkflow(ApprovalWorkflow):
    """Writes approval requests to the log; the default channel."""

    def __init__(self):
        self.requested: List[str] = []

    async def request_approval(self, job: RemediationJob, correlation_id: str) -> None:
        summary = approval_summary(job, correlation_id)
        self.requested.append(job.id)
        logger.warning(
            f"Approval required for job {job.id} ({summary['remediationType']} on "
            f"{summary['resourceId']}, risk {summary['riskLevel']}); approvers: {', '.join(summary['approvers'])}"
        )


class SnsApprovalWorkflow(ApprovalWorkflow):
    """
    Publishes approval requests to an SNS topic.

    Message attributes carry tenant, risk level and remediation type so
    subscribers can filter.
    """

    def __init__(self, topic_arn: str, clients: Optional[AwsClients] = None, region: Optional[str] = None):
        self.topic_arn = topic_arn
        self.clients = clients or AwsClients()
        # Topic ARN format: arn:aws:sns:<region>:<account>:<name>
        self.region = region or topic_arn.split(":")[3]

    async def request_approval(self, job: RemediationJob, correlation_id: str) -> None:
        summary = approval_summary(job, correlation_id)
        await self.clients.call(
            "sns", self.region, "publish",
            TopicArn=self.topic_arn,
            Subject=f"Remediation approval required: {summary['remediationType']}"[:100],
            Message=json.dumps(summary),
            MessageAttributes={
                "tenantId": {"DataType": "String", "StringValue": summary["tenantId"]},
                "riskLevel": {"DataType": "String", "StringValue": summary["riskLevel"] or "UNKNOWN"},
                "remediationType": {"DataType": "String", "StringValue": summary["remediationType"]},
            },
        )
        logger.info(f"Published approval request for job {job.id} to {self.topic_arn}")


class WebhookApprovalWorkflow(ApprovalWorkflow):
    """
    Posts approval requests to a Slack-compatible incoming webhook.

    Uses Slack attachments so the same payload renders in Slack and is
    still plain JSON for generic webhook receivers.
    """

    def __init__(self, webhook_url: str, timeout: float = 10.0, retry_config: Optional[RetryConfig] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        retry_config = retry_config or RetryConfig(max_attempts=3, min_wait=1.0, max_wait=5.0)
        self._post = retry_sync(
            max_attempts=retry_config.max_attempts,
            backoff_factor=retry_config.backoff_factor,
            min_wait=retry_config.min_wait,
            max_wait=retry_config.max_wait,
            jitter=retry_config.jitter,
            retryable_exceptions=(requests.ConnectionError, requests.Timeout),
        )(self._post_once)

    def _post_once(self, payload: Dict[str, Any]) -> None:
        response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        response.raise_for_status()

    def build_payload(self, job: RemediationJob, correlation_id: str) -> Dict[str, Any]:
        summary = approval_summary(job, correlation_id)
        risk = job.estimated_impact.risk_level if job.estimated_impact else RiskLevel.HIGH
        fields = [
            {"title": "Resource", "value": f"{summary['resourceType']} {summary['resourceId']}", "short": True},
            {"title": "Risk", "value": risk.value, "short": True},
            {"title": "Tenant", "value": summary["tenantId"], "short": True},
            {"title": "Requested by", "value": summary["requestedBy"], "short": True},
            {"title": "Approvers", "value": ", ".join(summary["approvers"]), "short": False},
        ]
        if summary["failedChecks"]:
            fields.append({"title": "Failed checks", "value": ", ".join(summary["failedChecks"]), "short": False})

        return {
            "text": f"Remediation approval required for job {job.id}",
            "attachments": [
                {
                    "color": _RISK_COLORS[risk],
                    "title": f"[{risk.value}] {summary['remediationType']}",
                    "text": summary["impact"] or "",
                    "fields": fields,
                    "footer": f"correlation {correlation_id}",
                }
            ],
            "remediation": summary,
        }

    async def request_approval(self, job: RemediationJob, correlation_id: str) -> None:
        await asyncio.to_thread(self._post, self.build_payload(job, correlation_id))
        logger.info(f"Posted approval request for job {job.id} to webhook")
