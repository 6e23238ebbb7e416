"""
Fix executors, one per resource kind, and the registry that resolves them.
"""

from typing import Optional

from .base import AwsClients, ExecutorRegistry, FixExecutor, require_param, undo_steps
from .cloudtrail import CloudTrailExecutor
from .iam import IamRoleExecutor
from .kms import KmsKeyExecutor
from .s3 import S3BucketExecutor
from .security_group import SecurityGroupExecutor


def default_registry(clients: Optional[AwsClients] = None) -> ExecutorRegistry:
    """Registry with every built-in AWS executor sharing one client cache."""
    clients = clients or AwsClients()
    return ExecutorRegistry([
        S3BucketExecutor(clients),
        IamRoleExecutor(clients),
        SecurityGroupExecutor(clients),
        CloudTrailExecutor(clients),
        KmsKeyExecutor(clients),
    ])


__all__ = [
    "AwsClients",
    "ExecutorRegistry",
    "FixExecutor",
    "require_param",
    "undo_steps",
    "default_registry",
    "S3BucketExecutor",
    "IamRoleExecutor",
    "SecurityGroupExecutor",
    "CloudTrailExecutor",
    "KmsKeyExecutor",
]
