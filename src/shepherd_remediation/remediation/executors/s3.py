"""
S3 bucket fix executor.

Handles default encryption, versioning and the bucket-level Public Access
Block. Every mutation records the bucket's real before-state so rollback
can restore it.
"""

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ...constants import (
    BLOCK_PUBLIC_ACCESS,
    ENABLE_BUCKET_ENCRYPTION,
    ENABLE_BUCKET_VERSIONING,
    S3_BUCKET,
)
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

DESIRED_PUBLIC_ACCESS_BLOCK = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


def encryption_satisfies(current: Optional[Dict[str, Any]], algorithm: str, kms_key_id: Optional[str] = None) -> bool:
    """True when a bucket encryption config already applies the requested algorithm and key."""
    for rule in (current or {}).get("Rules", []):
        default = rule.get("ApplyServerSideEncryptionByDefault", {})
        if default.get("SSEAlgorithm") != algorithm:
            continue
        if kms_key_id and default.get("KMSMasterKeyID") != kms_key_id:
            continue
        return True
    return False


class S3BucketExecutor:
    """Fix executor for S3 buckets."""

    kind = "s3-bucket"
    resource_type = S3_BUCKET
    remediation_types = frozenset({
        ENABLE_BUCKET_ENCRYPTION,
        ENABLE_BUCKET_VERSIONING,
        BLOCK_PUBLIC_ACCESS,
    })

    def __init__(self, clients: AwsClients):
        self.clients = clients

    async def _s3(self, request: RemediationRequest, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.clients.call("s3", request.region, method, **kwargs)

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        bucket = request.resource_id
        try:
            await self._s3(request, "head_bucket", Bucket=bucket)
        except ClientError as e:
            if error_code(e) in _MISSING_BUCKET_CODES:
                return ResourceSnapshot(exists=False)
            raise

        try:
            response = await self._s3(request, "get_bucket_tagging", Bucket=bucket)
            tags = tags_to_dict(response.get("TagSet"))
        except ClientError as e:
            if error_code(e) != "NoSuchTagSet":
                raise
            tags = {}

        return ResourceSnapshot(exists=True, tags=tags, attributes={"bucket": bucket})

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        bucket = request.resource_id
        if request.remediation_type == ENABLE_BUCKET_ENCRYPTION:
            return ImpactProfile(
                affected_resources=1,
                description=f"Enable default server-side encryption on bucket {bucket}; "
                            "existing objects are not re-encrypted",
                mitigations=["Confirm KMS key policies grant readers decrypt access when using SSE-KMS"],
            )
        if request.remediation_type == ENABLE_BUCKET_VERSIONING:
            return ImpactProfile(
                affected_resources=1,
                cost_impact=0.1,
                description=f"Enable versioning on bucket {bucket}; noncurrent versions add storage cost",
                mitigations=["Add a lifecycle rule expiring noncurrent versions"],
            )
        return ImpactProfile(
            affected_resources=1,
            description=f"Block all public access to bucket {bucket}",
            mitigations=[
                "Verify no static website or anonymous consumer depends on public reads",
                "Serve public content through CloudFront with origin access control instead",
            ],
        )

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        handlers = {
            ENABLE_BUCKET_ENCRYPTION: self._enable_encryption,
            ENABLE_BUCKET_VERSIONING: self._enable_versioning,
            BLOCK_PUBLIC_ACCESS: self._block_public_access,
        }
        return await handlers[request.remediation_type](request)

    async def _get_encryption(self, request: RemediationRequest) -> Optional[Dict[str, Any]]:
        try:
            response = await self._s3(request, "get_bucket_encryption", Bucket=request.resource_id)
        except ClientError as e:
            if error_code(e) == "ServerSideEncryptionConfigurationNotFoundError":
                return None
            raise
        rules = response.get("ServerSideEncryptionConfiguration", {}).get("Rules", [])
        return {"Rules": rules} if rules else None

    async def _enable_encryption(self, request: RemediationRequest) -> RemediationResult:
        bucket = request.resource_id
        algorithm = request.parameters.get("sseAlgorithm", "AES256")
        kms_key_id = request.parameters.get("kmsKeyId") if algorithm == "aws:kms" else None

        default: Dict[str, Any] = {"SSEAlgorithm": algorithm}
        if kms_key_id:
            default["KMSMasterKeyID"] = kms_key_id
        desired = {"Rules": [{"ApplyServerSideEncryptionByDefault": default}]}

        try:
            before = await self._get_encryption(request)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("GetBucketEncryption", bucket, e) from e

        if encryption_satisfies(before, algorithm, kms_key_id):
            logger.info(f"Bucket {bucket} already has {algorithm} default encryption")
            return RemediationResult(success=True, message=f"Bucket {bucket} already encrypted")

        change = Change(action="PUT_BUCKET_ENCRYPTION", resource=bucket, before=before, after=desired)
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would enable {algorithm} default encryption on {bucket}",
                changes=[change],
            )

        try:
            await self._s3(
                request, "put_bucket_encryption",
                Bucket=bucket, ServerSideEncryptionConfiguration=desired,
            )
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("PutBucketEncryption", bucket, e) from e

        logger.info(f"Enabled {algorithm} default encryption on {bucket}")
        return RemediationResult(
            success=True,
            message=f"Enabled default encryption on {bucket}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "PUT_BUCKET_ENCRYPTION", "before": before}]},
                instructions=[
                    f"Remove default encryption from bucket {bucket}" if before is None
                    else f"Restore the previous default encryption on bucket {bucket}"
                ],
            ),
        )

    async def _enable_versioning(self, request: RemediationRequest) -> RemediationResult:
        bucket = request.resource_id
        try:
            response = await self._s3(request, "get_bucket_versioning", Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("GetBucketVersioning", bucket, e) from e

        before = response.get("Status")
        if before == "Enabled":
            return RemediationResult(success=True, message=f"Versioning already enabled on {bucket}")

        change = Change(action="PUT_BUCKET_VERSIONING", resource=bucket, before=before, after="Enabled")
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would enable versioning on {bucket}",
                changes=[change],
            )

        try:
            await self._s3(
                request, "put_bucket_versioning",
                Bucket=bucket, VersioningConfiguration={"Status": "Enabled"},
            )
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("PutBucketVersioning", bucket, e) from e

        return RemediationResult(
            success=True,
            message=f"Enabled versioning on {bucket}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "PUT_BUCKET_VERSIONING", "before": before}]},
                instructions=[
                    f"Suspend versioning on bucket {bucket}",
                    "A versioned bucket cannot return to unversioned; existing versions are kept",
                ],
            ),
        )

    async def _block_public_access(self, request: RemediationRequest) -> RemediationResult:
        bucket = request.resource_id
        try:
            response = await self._s3(request, "get_public_access_block", Bucket=bucket)
            before: Optional[Dict[str, bool]] = response.get("PublicAccessBlockConfiguration")
        except ClientError as e:
            if error_code(e) != "NoSuchPublicAccessBlockConfiguration":
                raise aws_failure("GetPublicAccessBlock", bucket, e) from e
            before = None
        except BotoCoreError as e:
            raise aws_failure("GetPublicAccessBlock", bucket, e) from e

        if before == DESIRED_PUBLIC_ACCESS_BLOCK:
            return RemediationResult(success=True, message=f"Public access already blocked on {bucket}")

        change = Change(
            action="PUT_PUBLIC_ACCESS_BLOCK", resource=bucket,
            before=before, after=dict(DESIRED_PUBLIC_ACCESS_BLOCK),
        )
        if request.dry_run:
            return RemediationResult(
                success=True,
                message=f"[DRY RUN] Would block public access on {bucket}",
                changes=[change],
            )

        try:
            await self._s3(
                request, "put_public_access_block",
                Bucket=bucket, PublicAccessBlockConfiguration=dict(DESIRED_PUBLIC_ACCESS_BLOCK),
            )
        except (ClientError, BotoCoreError) as e:
            raise aws_failure("PutPublicAccessBlock", bucket, e) from e

        return RemediationResult(
            success=True,
            message=f"Blocked public access on {bucket}",
            changes=[change],
            rollback=RollbackDescriptor(
                executor_kind=self.kind,
                before_state={"steps": [{"action": "PUT_PUBLIC_ACCESS_BLOCK", "before": before}]},
                instructions=[f"Restore the previous Public Access Block settings on {bucket}"],
            ),
        )

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        bucket = request.resource_id

        async def undo(step: Dict[str, Any]) -> RollbackActionStatus:
            action, before = step["action"], step.get("before")
            if action == "PUT_BUCKET_ENCRYPTION":
                if before is None:
                    await self._s3(request, "delete_bucket_encryption", Bucket=bucket)
                else:
                    await self._s3(
                        request, "put_bucket_encryption",
                        Bucket=bucket, ServerSideEncryptionConfiguration=before,
                    )
            elif action == "PUT_BUCKET_VERSIONING":
                if before in (None, "Suspended"):
                    await self._s3(
                        request, "put_bucket_versioning",
                        Bucket=bucket, VersioningConfiguration={"Status": "Suspended"},
                    )
                else:
                    return RollbackActionStatus.SKIPPED
            elif action == "PUT_PUBLIC_ACCESS_BLOCK":
                if before is None:
                    await self._s3(request, "delete_public_access_block", Bucket=bucket)
                else:
                    await self._s3(
                        request, "put_public_access_block",
                        Bucket=bucket, PublicAccessBlockConfiguration=before,
                    )
            else:
                return RollbackActionStatus.SKIPPED
            return RollbackActionStatus.SUCCESS

        result = await undo_steps(descriptor.before_state.get("steps", []), undo, bucket)
        logger.info(f"Rollback on {bucket}: {result.message}")
        return result
