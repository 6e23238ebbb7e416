"""KMS key fix executor: enables automatic key rotation."""

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from ...constants import ENABLE_KEY_ROTATION, KMS_KEY
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
from .base import AwsClients, aws_failure, error_code, undo_steps

logger = logging.getLogger(__name__)


class KmsKeyExecutor:
    """Fix executor for customer-managed KMS keys."""

    kind = "kms-key"
    resource_type = KMS_KEY
    remediation_types = frozenset({ENABLE_KEY_ROTATION})

    def __init__(self, clients: AwsClients):
        self.clients = clients

    async def _kms(self, request: RemediationRequest, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.clients.call("kms", request.region, method, **kwargs)

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        try:
            response = await self._kms(request, "describe_key", KeyId=request.resource_id)
        except ClientError as e:
            if error_code(e) == "NotFoundException":
                return ResourceSnapshot(exists=False)
            raise

        metadata = response["KeyMetadata"]
        tags = await self._kms(request, "list_resource_tags", KeyId=metadata["KeyId"])
        return ResourceSnapshot(
            exists=True,
            tags=tags_to_dict(tags.get("Tags"), key_field="TagKey", value_field="TagValue"),
            attributes={
                "arn": metadata["Arn"],
                "keyManager": metadata.get("KeyManager"),
                "keyState": metadata.get("KeyState"),
            },
        )

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        return ImpactProfile(
            affected_resources=1,
            cost_impact=1.0,
            description=f"Enable annual automatic rotation of key {request.resource_id}; "
                        "previous key material stays available for decryption",
            mitigations=["Each rotated key version is billed as a key-month"],
        )

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        key_id = request.resource_id
        try:
            metadata = (await self._kms(request, "describe_key", KeyId=key_id))["KeyMetadata"]
            status = await self._kms(request, "get_key_rotation_status", KeyId=key_id)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("GetKeyRotationStatus", key_id, e) from e

        if metadata.get("KeyManager") == "AWS":
            raise ExecutionFailure(f"Key {key_id} is AWS managed; rotation cannot be changed")

        before = bool(status.get("KeyRotationEnabled", False))
        if before:
            return RemediationResult(success=True, message=f"Rotation already enabled on key {key_id}")

        change = Change(action="ENABLE_KEY_ROTATION", resource=key_id, before=False, after=True)
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would enable rotation on key {key_id}",
                changes=[change],
            )

        try:
            await self._kms(request, "enable_key_rotation", KeyId=key_id)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("EnableKeyRotation", key_id, e) from e

        return RemediationResult(
            success=True,
            message=f"Enabled rotation on key {key_id}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "ENABLE_KEY_ROTATION", "before": before}]},
                instructions=[f"Disable automatic rotation on key {key_id}"],
            ),
        )

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        key_id = request.resource_id

        async def undo(step: Dict[str, Any]) -> RollbackActionStatus:
            if step["action"] != "ENABLE_KEY_ROTATION" or step.get("before"):
                return RollbackActionStatus.SKIPPED
            await self._kms(request, "disable_key_rotation", KeyId=key_id)
            return RollbackActionStatus.SUCCESS

        return await undo_steps(descriptor.before_state.get("steps", []), undo, key_id)
