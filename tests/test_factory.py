"""
Tests for assembling an orchestrator from configuration.
"""
import pytest

from shepherd_remediation.audit import FileAuditBackend, InMemoryAuditBackend
from shepherd_remediation.config import EngineConfig
from shepherd_remediation.exceptions import ConfigurationError
from shepherd_remediation.remediation import build_orchestrator
from shepherd_remediation.remediation.approval import (
    LoggingApprovalWorkflow,
    SnsApprovalWorkflow,
    WebhookApprovalWorkflow,
)
from shepherd_remediation.remediation.factory import build_approval_workflow, build_retry_config
from shepherd_remediation.remediation.executors import AwsClients
from shepherd_remediation.storage import DynamoDBJobStore, InMemoryJobStore, SQLiteJobStore


def test_defaults_are_in_memory():
    orchestrator = build_orchestrator(EngineConfig())

    assert isinstance(orchestrator.store, InMemoryJobStore)
    assert isinstance(orchestrator.audit.backend, InMemoryAuditBackend)
    assert isinstance(orchestrator.approval, LoggingApprovalWorkflow)
    assert len(orchestrator.registry) == 5
    assert orchestrator.policy.version == "2024.1"


def test_sqlite_and_file_audit(tmp_path):
    config = EngineConfig(
        store_backend="sqlite",
        sqlite_path=str(tmp_path / "jobs.db"),
        audit_backend="file",
        audit_file=str(tmp_path / "audit.jsonl"),
    )

    orchestrator = build_orchestrator(config)

    assert isinstance(orchestrator.store, SQLiteJobStore)
    assert isinstance(orchestrator.audit.backend, FileAuditBackend)


def test_dynamodb_store_creates_table(aws_credentials):
    pytest.importorskip("moto")
    from moto import mock_aws

    with mock_aws():
        import boto3

        orchestrator = build_orchestrator(EngineConfig(store_backend="dynamodb", dynamodb_table="jobs-test"))

        assert isinstance(orchestrator.store, DynamoDBJobStore)
        tables = boto3.client("dynamodb", region_name="us-east-1").list_tables()["TableNames"]
        assert "jobs-test" in tables


def test_invalid_config_rejected():
    with pytest.raises(ConfigurationError):
        build_orchestrator(EngineConfig(approval_channel="sns"))


def test_custom_policy_file(tmp_path):
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text("version: 'custom-7'\n")

    orchestrator = build_orchestrator(EngineConfig(policy_file=str(policy_file)))

    assert orchestrator.policy.version == "custom-7"


def test_approval_channels():
    clients = AwsClients()
    sns = build_approval_workflow(
        EngineConfig(approval_channel="sns", sns_topic_arn="arn:aws:sns:eu-west-1:123456789012:approvals"),
        clients,
    )
    webhook = build_approval_workflow(
        EngineConfig(approval_channel="webhook", webhook_url="https://hooks.example.com/x"), clients
    )

    assert isinstance(sns, SnsApprovalWorkflow)
    assert sns.region == "eu-west-1"
    assert isinstance(webhook, WebhookApprovalWorkflow)


def test_retry_config_from_engine_config():
    retry = build_retry_config(EngineConfig(executor_max_attempts=2, executor_min_wait=0.1, executor_max_wait=1.0))

    assert (retry.max_attempts, retry.min_wait, retry.max_wait) == (2, 0.1, 1.0)
