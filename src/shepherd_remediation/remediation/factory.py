"""
Assemble a RemediationOrchestrator from an EngineConfig.
"""

import logging
from typing import Any, Callable, Optional

from ..audit import AuditTrail, FileAuditBackend, InMemoryAuditBackend
from ..config import EngineConfig
from ..exceptions import ConfigurationError
from ..policy import load_policy
from ..retry import RetryConfig
from ..storage import DynamoDBJobStore, InMemoryJobStore, JobStore, SQLiteJobStore
from .approval import (
    ApprovalWorkflow,
    LoggingApprovalWorkflow,
    SnsApprovalWorkflow,
    WebhookApprovalWorkflow,
)
from .executors import AwsClients, default_registry
from .guardrails import GuardrailEngine, default_checks
from .impact import ImpactEstimator
from .orchestrator import RemediationOrchestrator
from .rollback import RollbackManager

logger = logging.getLogger(__name__)


def build_retry_config(config: EngineConfig) -> RetryConfig:
    return RetryConfig(
        max_attempts=config.executor_max_attempts,
        min_wait=config.executor_min_wait,
        max_wait=config.executor_max_wait,
    )


def build_store(
    config: EngineConfig,
    client_factory: Optional[Callable[..., Any]] = None,
) -> JobStore:
    """Job store for ``config.store_backend``."""
    if config.store_backend == "memory":
        return InMemoryJobStore()
    if config.store_backend == "sqlite":
        return SQLiteJobStore(config.sqlite_path)
    if config.store_backend == "dynamodb":
        store = DynamoDBJobStore(
            table_name=config.dynamodb_table,
            region_name=config.aws_region,
            client_factory=client_factory,
            endpoint_url=config.aws_endpoint_url,
            retry_config=build_retry_config(config),
        )
        store.ensure_table()
        return store
    raise ConfigurationError(f"Unknown store backend: {config.store_backend}")


def build_audit_trail(config: EngineConfig) -> AuditTrail:
    if config.audit_backend == "file":
        return AuditTrail(FileAuditBackend(config.audit_file))
    return AuditTrail(InMemoryAuditBackend())


def build_approval_workflow(config: EngineConfig, clients: AwsClients) -> ApprovalWorkflow:
    if config.approval_channel == "sns":
        return SnsApprovalWorkflow(config.sns_topic_arn, clients=clients)
    if config.approval_channel == "webhook":
        return WebhookApprovalWorkflow(config.webhook_url, retry_config=build_retry_config(config))
    return LoggingApprovalWorkflow()


def build_orchestrator(
    config: Optional[EngineConfig] = None,
    client_factory: Optional[Callable[..., Any]] = None,
) -> RemediationOrchestrator:
    """
    Build a fully wired orchestrator.

    Args:
        config: Engine configuration (loaded from file/env when None)
        client_factory: boto3 client factory override

    Raises:
        ConfigurationError: Invalid configuration or policy file
    """
    config = config or EngineConfig.load()
    config.validate()

    policy = load_policy(config.policy_file)
    clients = AwsClients(
        client_factory=client_factory,
        retry_config=build_retry_config(config),
        endpoint_url=config.aws_endpoint_url,
    )
    registry = default_registry(clients)

    orchestrator = RemediationOrchestrator(
        store=build_store(config, client_factory),
        registry=registry,
        audit=build_audit_trail(config),
        policy=policy,
        guardrails=GuardrailEngine(
            default_checks(policy, config.business_hours_start, config.business_hours_end)
        ),
        estimator=ImpactEstimator(policy),
        approval=build_approval_workflow(config, clients),
        rollback_manager=RollbackManager(registry),
    )
    logger.info(
        f"Orchestrator ready: store={config.store_backend}, audit={config.audit_backend}, "
        f"approval={config.approval_channel}, executors={len(registry)}"
    )
    return orchestrator
