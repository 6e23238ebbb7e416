"""
EC2 security group fix executor.

Restricts world-open SSH ingress to a trusted CIDR and removes individual
overly permissive ingress rules. Each rule added or revoked is recorded as
its own rollback step, so a rollback can partially succeed.
"""

import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ...constants import (
    DEFAULT_SSH_CIDR,
    REMOVE_OVERLY_PERMISSIVE_RULE,
    RESTRICT_SSH_ACCESS,
    SECURITY_GROUP,
    WORLD_CIDR,
)
from ...exceptions import ExecutionFailure
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

SSH_PORT = 22
WORLD_CIDR_V6 = "::/0"


def _permission(protocol: str, from_port: Optional[int], to_port: Optional[int], cidr: str) -> Dict[str, Any]:
    """Single-CIDR ingress permission in EC2 API shape."""
    permission: Dict[str, Any] = {"IpProtocol": protocol}
    if protocol != "-1":
        permission["FromPort"] = from_port
        permission["ToPort"] = to_port
    if ":" in cidr:
        permission["Ipv6Ranges"] = [{"CidrIpv6": cidr}]
    else:
        permission["IpRanges"] = [{"CidrIp": cidr}]
    return permission


def _covers_port(permission: Dict[str, Any], port: int) -> bool:
    protocol = str(permission.get("IpProtocol"))
    if protocol == "-1":
        return True
    if protocol not in ("tcp", "6"):
        return False
    return permission.get("FromPort", 0) <= port <= permission.get("ToPort", 65535)


def world_open_ssh_rules(permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Single-CIDR permissions that expose SSH to the internet."""
    rules = []
    for permission in permissions:
        if not _covers_port(permission, SSH_PORT):
            continue
        protocol = str(permission.get("IpProtocol"))
        cidrs = [r.get("CidrIp") for r in permission.get("IpRanges", [])]
        cidrs += [r.get("CidrIpv6") for r in permission.get("Ipv6Ranges", [])]
        for cidr in cidrs:
            if cidr in (WORLD_CIDR, WORLD_CIDR_V6):
                rules.append(_permission(protocol, permission.get("FromPort"), permission.get("ToPort"), cidr))
    return rules


def has_rule(permissions: List[Dict[str, Any]], rule: Dict[str, Any]) -> bool:
    """Whether ``rule`` (single-CIDR) is present in the group's permissions."""
    cidr_key, range_key = ("CidrIpv6", "Ipv6Ranges") if "Ipv6Ranges" in rule else ("CidrIp", "IpRanges")
    cidr = rule[range_key][0][cidr_key]
    for permission in permissions:
        if str(permission.get("IpProtocol")) != rule["IpProtocol"]:
            continue
        if rule["IpProtocol"] != "-1" and (
            permission.get("FromPort") != rule.get("FromPort") or permission.get("ToPort") != rule.get("ToPort")
        ):
            continue
        if any(r.get(cidr_key) == cidr for r in permission.get(range_key, [])):
            return True
    return False


class SecurityGroupExecutor:
    """Fix executor for EC2 security groups."""

    kind = "ec2-security-group"
    resource_type = SECURITY_GROUP
    remediation_types = frozenset({RESTRICT_SSH_ACCESS, REMOVE_OVERLY_PERMISSIVE_RULE})

    def __init__(self, clients: AwsClients):
        self.clients = clients

    async def _ec2(self, request: RemediationRequest, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.clients.call("ec2", request.region, method, **kwargs)

    async def _group(self, request: RemediationRequest) -> Dict[str, Any]:
        response = await self._ec2(request, "describe_security_groups", GroupIds=[request.resource_id])
        return response["SecurityGroups"][0]

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        try:
            group = await self._group(request)
        except ClientError as e:
            if error_code(e) in ("InvalidGroup.NotFound", "InvalidGroupId.Malformed"):
                return ResourceSnapshot(exists=False)
            raise

        interfaces = await self._ec2(
            request, "describe_network_interfaces",
            Filters=[{"Name": "group-id", "Values": [request.resource_id]}],
        )
        return ResourceSnapshot(
            exists=True,
            tags=tags_to_dict(group.get("Tags")),
            dependents=len(interfaces.get("NetworkInterfaces", [])),
            attributes={"groupName": group.get("GroupName"), "vpcId": group.get("VpcId")},
        )

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        group = request.resource_id
        if request.remediation_type == RESTRICT_SSH_ACCESS:
            cidr = request.parameters.get("allowedCidr", DEFAULT_SSH_CIDR)
            description = f"Restrict SSH ingress on {group} to {cidr}"
            mitigations = [
                f"Confirm operators reach instances from {cidr} (VPN or bastion)",
                "Prefer Session Manager for shell access",
            ]
        else:
            description = f"Remove an overly permissive ingress rule from {group}"
            mitigations = ["Confirm no client relies on the rule being removed"]
        return ImpactProfile(
            affected_resources=1 + snapshot.dependents,
            downtime=snapshot.dependents > 0,
            description=description,
            mitigations=mitigations,
        )

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        group_id = request.resource_id
        try:
            group = await self._group(request)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("DescribeSecurityGroups", group_id, e) from e
        permissions = group.get("IpPermissions", [])

        if request.remediation_type == RESTRICT_SSH_ACCESS:
            steps = self._plan_restrict_ssh(request, permissions)
        else:
            steps = self._plan_remove_rule(request, permissions)

        if not steps:
            return RemediationResult(success=True, message=f"Security group {group_id} already compliant")

        changes = [
            Change(
                action=step["action"],
                resource=group_id,
                before=step["permission"] if step["action"] == "REVOKE_INGRESS" else None,
                after=step["permission"] if step["action"] == "AUTHORIZE_INGRESS" else None,
            )
            for step in steps
        ]
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would apply {len(steps)} ingress change(s) to {group_id}",
                changes=changes,
            )

        applied: List[Dict[str, Any]] = []
        for step in steps:
            method = (
                "authorize_security_group_ingress"
                if step["action"] == "AUTHORIZE_INGRESS"
                else "revoke_security_group_ingress"
            )
            try:
                await self._ec2(request, method, GroupId=group_id, IpPermissions=[step["permission"]])
            except (ClientError, BotoCoreError) as e:
                failure = aws_failure(step["action"], group_id, e)
                failure.details["appliedSteps"] = applied
                if applied:
                    compensation = await self._undo(request, applied)
                    failure.details["compensation"] = compensation.to_dict()
                    logger.warning(f"Reverted {len(applied)} applied step(s) on {group_id}: {compensation.message}")
                raise failure from e
            applied.append(step)

        logger.info(f"Applied {len(applied)} ingress change(s) to {group_id}")
        return RemediationResult(
            success=True,
            message=f"Updated ingress rules on {group_id}",
            changes=changes,
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": applied},
                instructions=[
                    "Re-authorize each revoked ingress rule",
                    "Revoke each ingress rule added by the remediation",
                ],
            ),
        )

    def _plan_restrict_ssh(self, request: RemediationRequest, permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        open_rules = world_open_ssh_rules(permissions)
        if not open_rules:
            return []

        allowed = _permission("tcp", SSH_PORT, SSH_PORT, request.parameters.get("allowedCidr", DEFAULT_SSH_CIDR))
        steps: List[Dict[str, Any]] = []
        # Add the restricted rule first so access is never fully cut
        if not has_rule(permissions, allowed):
            steps.append({"action": "AUTHORIZE_INGRESS", "permission": allowed})
        steps.extend({"action": "REVOKE_INGRESS", "permission": rule} for rule in open_rules)
        return steps

    def _plan_remove_rule(self, request: RemediationRequest, permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        wanted = require_param(request, "rule")
        if not isinstance(wanted, dict) or "cidr" not in wanted:
            raise ExecutionFailure("Parameter 'rule' must be an object with ipProtocol, fromPort, toPort and cidr")

        protocol = str(wanted.get("ipProtocol", "tcp"))
        rule = _permission(protocol, wanted.get("fromPort"), wanted.get("toPort"), wanted["cidr"])
        if not has_rule(permissions, rule):
            return []
        return [{"action": "REVOKE_INGRESS", "permission": rule}]

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        group_id = request.resource_id
        result = await self._undo(request, descriptor.before_state.get("steps", []))
        logger.info(f"Rollback on {group_id}: {result.message}")
        return result

    async def _undo(self, request: RemediationRequest, steps: List[Dict[str, Any]]) -> RollbackResult:
        group_id = request.resource_id

        async def undo(step: Dict[str, Any]) -> RollbackActionStatus:
            permission = step["permission"]
            if step["action"] == "REVOKE_INGRESS":
                method, already_done = "authorize_security_group_ingress", "InvalidPermission.Duplicate"
            elif step["action"] == "AUTHORIZE_INGRESS":
                method, already_done = "revoke_security_group_ingress", "InvalidPermission.NotFound"
            else:
                return RollbackActionStatus.SKIPPED
            try:
                await self._ec2(request, method, GroupId=group_id, IpPermissions=[permission])
            except ClientError as e:
                if error_code(e) == already_done:
                    return RollbackActionStatus.SKIPPED
                raise
            return RollbackActionStatus.SUCCESS

        return await undo_steps(steps, undo, group_id)
