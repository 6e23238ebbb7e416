"""CloudTrail fix executor: turns on log file integrity validation."""

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from ...constants import CLOUDTRAIL, ENABLE_LOG_FILE_VALIDATION
from ...models import (
    Change,
    ImpactProfile,
    RemediationRequest,
    RemediationResult,
    ResourceSnapshot,
    RollbackActionStatus,
    RollbackDescriptor,
    RollbackResult,
)
from ...utils import tags_to_dict
from .base import AwsClients, aws_failure, error_code, undo_steps

logger = logging.getLogger(__name__)


class CloudTrailExecutor:
    """Fix executor for CloudTrail trails."""

    kind = "cloudtrail"
    resource_type = CLOUDTRAIL
    remediation_types = frozenset({ENABLE_LOG_FILE_VALIDATION})

    def __init__(self, clients: AwsClients):
        self.clients = clients

    async def _ct(self, request: RemediationRequest, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.clients.call("cloudtrail", request.region, method, **kwargs)

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        try:
            response = await self._ct(request, "get_trail", Name=request.resource_id)
        except ClientError as e:
            if error_code(e) == "TrailNotFoundException":
                return ResourceSnapshot(exists=False)
            raise

        trail = response["Trail"]
        tags_response = await self._ct(request, "list_tags", ResourceIdList=[trail["TrailARN"]])
        tag_list = next(iter(tags_response.get("ResourceTagList", [])), {}).get("TagsList", [])
        return ResourceSnapshot(
            exists=True,
            tags=tags_to_dict(tag_list),
            attributes={
                "arn": trail["TrailARN"],
                "logFileValidationEnabled": trail.get("LogFileValidationEnabled", False),
            },
        )

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        return ImpactProfile(
            affected_resources=1,
            description=f"Enable log file validation on trail {request.resource_id}; "
                        "CloudTrail starts delivering hourly digest files",
            mitigations=["Ensure the trail bucket policy allows digest file delivery"],
        )

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        trail = request.resource_id
        try:
            response = await self._ct(request, "get_trail", Name=trail)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("GetTrail", trail, e) from e

        before = bool(response["Trail"].get("LogFileValidationEnabled", False))
        if before:
            return RemediationResult(success=True, message=f"Log file validation already enabled on {trail}")

        change = Change(action="ENABLE_LOG_FILE_VALIDATION", resource=trail, before=False, after=True)
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would enable log file validation on {trail}",
                changes=[change],
            )

        try:
            await self._ct(request, "update_trail", Name=trail, EnableLogFileValidation=True)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("UpdateTrail", trail, e) from e

        return RemediationResult(
            success=True,
            message=f"Enabled log file validation on {trail}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "ENABLE_LOG_FILE_VALIDATION", "before": before}]},
                instructions=[f"Disable log file validation on trail {trail}"],
            ),
        )

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        trail = request.resource_id

        async def undo(step: Dict[str, Any]) -> RollbackActionStatus:
            if step["action"] != "ENABLE_LOG_FILE_VALIDATION":
                return RollbackActionStatus.SKIPPED
            await self._ct(request, "update_trail", Name=trail, EnableLogFileValidation=bool(step.get("before")))
            return RollbackActionStatus.SUCCESS

        return await undo_steps(descriptor.before_state.get("steps", []), undo, trail)
