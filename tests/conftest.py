"""
Shared fixtures for remediation engine tests.
"""
import pytest

from helpers import WEEKEND, FakeExecutor
from shepherd_remediation.audit import AuditTrail, InMemoryAuditBackend
from shepherd_remediation.policy import load_policy
from shepherd_remediation.remediation.approval import LoggingApprovalWorkflow
from shepherd_remediation.remediation.executors.base import ExecutorRegistry
from shepherd_remediation.remediation.orchestrator import RemediationOrchestrator
from shepherd_remediation.storage import InMemoryJobStore


@pytest.fixture
def policy():
    return load_policy()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def registry(fake_executor):
    return ExecutorRegistry([fake_executor])


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def audit_backend():
    return InMemoryAuditBackend()


@pytest.fixture
def approval():
    return LoggingApprovalWorkflow()


@pytest.fixture
def orchestrator(store, registry, audit_backend, policy, approval):
    return RemediationOrchestrator(
        store=store,
        registry=registry,
        audit=AuditTrail(audit_backend),
        policy=policy,
        approval=approval,
        clock=lambda: WEEKEND,
    )


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
