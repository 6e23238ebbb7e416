"""
Fix executor contract and registry.

A fix executor knows how to mutate one resource kind and how to undo that
mutation. Executors are plain classes satisfying the ``FixExecutor``
protocol; the ``ExecutorRegistry`` built at startup maps
``(resource_type, remediation_type)`` to the executor that handles it.

Classes:
    FixExecutor: Capability protocol every executor satisfies
    AwsClients: Shared boto3 client cache plus retrying call helper
    ExecutorRegistry: Lookup table from resource/remediation type to executor
"""

import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Protocol, Tuple, runtime_checkable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ...exceptions import ExecutionFailure, ValidationError
from ...models import (
    ImpactProfile,
    RemediationRequest,
    RemediationResult,
    ResourceSnapshot,
    RollbackAction,
    RollbackActionStatus,
    RollbackDescriptor,
    RollbackResult,
)
from ...retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


@runtime_checkable
class FixExecutor(Protocol):
    """Capability set of a pluggable fix executor."""

    kind: str
    resource_type: str
    remediation_types: FrozenSet[str]

    async def describe(self, request: RemediationRequest) -> ResourceSnapshot:
        """Fetch live metadata for the target resource (read-only)."""
        ...

    async def estimate_impact(self, request: RemediationRequest, snapshot: ResourceSnapshot) -> ImpactProfile:
        """Describe what the change would touch (read-only)."""
        ...

    async def execute(self, request: RemediationRequest) -> RemediationResult:
        """Apply the fix, or report the would-be change under dry run."""
        ...

    async def rollback(self, descriptor: RollbackDescriptor, request: RemediationRequest) -> RollbackResult:
        """Undo the changes recorded in ``descriptor``."""
        ...


def error_code(error: BaseException) -> str:
    """AWS error code of a ClientError, or '' for anything else."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def require_param(request: RemediationRequest, name: str) -> Any:
    """
    Read a required remediation parameter.

    Raises:
        ExecutionFailure: If the parameter is missing or empty
    """
    value = request.parameters.get(name)
    if value in (None, ""):
        raise ExecutionFailure(
            f"{request.remediation_type} requires parameter '{name}'",
            {"parameter": name},
        )
    return value


class AwsClients:
    """
    Per-region boto3 client cache with retrying calls.

    Args:
        client_factory: Callable creating a client, ``boto3.client`` by default
        retry_config: Backoff settings for throttling and timeouts
        endpoint_url: Optional endpoint override for every client
    """

    def __init__(
        self,
        client_factory: Optional[Callable[..., Any]] = None,
        retry_config: Optional[RetryConfig] = None,
        endpoint_url: Optional[str] = None,
    ):
        self._factory = client_factory or boto3.client
        self.retry_config = retry_config or RetryConfig()
        self.endpoint_url = endpoint_url
        self._clients: Dict[Tuple[str, str], Any] = {}

    def client(self, service: str, region: str) -> Any:
        key = (service, region)
        if key not in self._clients:
            kwargs: Dict[str, Any] = {"region_name": region}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            self._clients[key] = self._factory(service, **kwargs)
        return self._clients[key]

    async def call(self, service: str, region: str, method: str, **kwargs: Any) -> Dict[str, Any]:
        """Call ``service.method`` with retry on transient errors."""
        client = self.client(service, region)
        return await call_with_retry(getattr(client, method), config=self.retry_config, **kwargs)


async def undo_steps(
    steps: List[Dict[str, Any]],
    undo: Callable[[Dict[str, Any]], Any],
    resource: str,
) -> RollbackResult:
    """
    Undo recorded change steps in reverse order.

    Each step is attempted independently so one failure does not stop the
    rest; the result is partial when some but not all steps failed.

    Args:
        steps: Recorded change steps, in apply order
        undo: Coroutine function reversing one step; returns
            RollbackActionStatus.SKIPPED when there was nothing to undo
        resource: Resource identifier for the action records
    """
    actions: List[RollbackAction] = []
    for step in reversed(steps):
        action = f"UNDO_{step.get('action', 'CHANGE')}"
        try:
            status = await undo(step) or RollbackActionStatus.SUCCESS
            actions.append(RollbackAction(action=action, resource=resource, status=status))
        except (ClientError, BotoCoreError, ExecutionFailure, KeyError, TypeError, ValueError) as e:
            logger.error(f"Rollback step {action} failed for {resource}: {e!r}")
            actions.append(RollbackAction(
                action=action,
                resource=resource,
                status=RollbackActionStatus.FAILED,
                error=str(e),
            ))
    return RollbackResult.from_actions(actions)


def aws_failure(action: str, resource: str, error: Exception) -> ExecutionFailure:
    """Wrap an AWS SDK error raised while applying a fix."""
    code = error_code(error) or type(error).__name__
    return ExecutionFailure(f"{action} failed for {resource}: {error}", {"awsErrorCode": code})


class ExecutorRegistry:
    """
    Lookup table from ``(resource_type, remediation_type)`` to executor.

    Example:
        >>> registry = ExecutorRegistry()
        >>> registry.register(S3BucketExecutor(clients))
        >>> executor = registry.resolve("S3_BUCKET", "ENABLE_BUCKET_ENCRYPTION")
    """

    def __init__(self, executors: Optional[List[FixExecutor]] = None):
        self._by_key: Dict[Tuple[str, str], FixExecutor] = {}
        self._by_kind: Dict[str, FixExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: FixExecutor) -> None:
        """
        Register an executor for each remediation type it handles.

        Raises:
            ValueError: If a key or kind is already registered
        """
        if executor.kind in self._by_kind:
            raise ValueError(f"Executor kind '{executor.kind}' already registered")
        for remediation_type in executor.remediation_types:
            key = (executor.resource_type, remediation_type)
            if key in self._by_key:
                raise ValueError(f"Executor already registered for {key}")
            self._by_key[key] = executor
        self._by_kind[executor.kind] = executor
        logger.debug(
            f"Registered executor '{executor.kind}' for {executor.resource_type}: "
            f"{sorted(executor.remediation_types)}"
        )

    def resolve(self, resource_type: str, remediation_type: str) -> FixExecutor:
        """
        Find the executor for a resource/remediation type pair.

        Raises:
            ValidationError: If the pair is not supported
        """
        executor = self._by_key.get((resource_type.upper(), remediation_type.upper()))
        if executor is None:
            raise ValidationError(
                f"Unsupported remediation {remediation_type} for resource type {resource_type}",
                [f"remediationType: not supported for {resource_type}"],
            )
        return executor

    def get_by_kind(self, kind: str) -> Optional[FixExecutor]:
        return self._by_kind.get(kind)

    def supported(self) -> List[Tuple[str, str]]:
        """All registered (resource_type, remediation_type) pairs."""
        return sorted(self._by_key)

    def __len__(self) -> int:
        return len(self._by_kind)
