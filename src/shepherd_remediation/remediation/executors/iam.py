"""IAM role fix executor: attaches a managed security policy to a role."""

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from ...constants import ATTACH_SECURITY_POLICY, IAM_ROLE
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
from .base import AwsClients, aws_failure, error_code, require_param, undo_steps

logger = logging.getLogger(__name__)

# IAM is a global service; calls go to its home region
IAM_REGION = "us-east-1"


class IamRoleExecutor:
    """Fix executor for IAM roles."""

    kind = "iam-role"
    resource_type = IAM_ROLE
    remediation_types = frozenset({ATTACH_SECURITY_POLICY})

    def __init__(self, clients: AwsClients):
        self.clients = clients

    async def _iam(self, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.clients.call("iam", IAM_REGION, method, **kwargs)

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        role = request.resource_id
        try:
            response = await self._iam("get_role", RoleName=role)
        except ClientError as e:
            if error_code(e) == "NoSuchEntity":
                return ResourceSnapshot(exists=False)
            raise

        tags = await self._iam("list_role_tags", RoleName=role)
        profiles = await self._iam("list_instance_profiles_for_role", RoleName=role)
        return ResourceSnapshot(
            exists=True,
            tags=tags_to_dict(tags.get("Tags")),
            dependents=len(profiles.get("InstanceProfiles", [])),
            attributes={"arn": response["Role"]["Arn"]},
        )

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        policy_arn = request.parameters.get("policyArn", "<policyArn>")
        return ImpactProfile(
            affected_resources=1 + snapshot.dependents,
            description=f"Attach policy {policy_arn} to role {request.resource_id}; "
                        "explicit denies take effect for every principal assuming the role",
            mitigations=[
                "Review the policy's deny statements against the role's workloads",
                "Apply during a maintenance window for roles used by production services",
            ],
        )

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        role = request.resource_id
        policy_arn = require_param(request, "policyArn")

        try:
            attached = await self._attached_policies(role)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("ListAttachedRolePolicies", role, e) from e

        if policy_arn in attached:
            return RemediationResult(success=True, message=f"Policy {policy_arn} already attached to {role}")

        change = Change(action="ATTACH_ROLE_POLICY", resource=role, before=sorted(attached), after=policy_arn)
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would attach {policy_arn} to role {role}",
                changes=[change],
            )

        try:
            await self._iam("attach_role_policy", RoleName=role, PolicyArn=policy_arn)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("AttachRolePolicy", role, e) from e

        logger.info(f"Attached {policy_arn} to role {role}")
        return RemediationResult(
            success=True,
            message=f"Attached security policy to role {role}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "ATTACH_ROLE_POLICY", "policyArn": policy_arn}]},
                instructions=[f"Detach policy {policy_arn} from role {role}"],
            ),
        )

    async def _attached_policies(self, role: str) -> set:
        attached = set()
        kwargs: Dict[str, Any] = {"RoleName": role}
        while True:
            response = await self._iam("list_attached_role_policies", **kwargs)
            attached.update(p["PolicyArn"] for p in response.get("AttachedPolicies", []))
            if not response.get("IsTruncated"):
                return attached
            kwargs["Marker"] = response["Marker"]

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        role = request.resource_id

        async def undo(step: Dict[str, Any]) -> RollbackActionStatus:
            if step["action"] != "ATTACH_ROLE_POLICY":
                return RollbackActionStatus.SKIPPED
            try:
                await self._iam("detach_role_policy", RoleName=role, PolicyArn=step["policyArn"])
            except ClientError as e:
                if error_code(e) == "NoSuchEntity":
                    logger.info(f"Policy {step['policyArn']} already detached from {role}")
                    return RollbackActionStatus.SKIPPED
                raise
            return RollbackActionStatus.SUCCESS

        return await undo_steps(descriptor.before_state.get("steps", []), undo, role)
