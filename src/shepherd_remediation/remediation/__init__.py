"""
Remediation workflow: guardrails, impact estimation, approval gate,
fix execution and rollback, coordinated by the orchestrator.
"""

from .approval import (
    ApprovalWorkflow,
    LoggingApprovalWorkflow,
    SnsApprovalWorkflow,
    WebhookApprovalWorkflow,
)
from .context import EvaluationContext
from .executors import AwsClients, ExecutorRegistry, FixExecutor, default_registry
from .factory import build_orchestrator
from .gate import evaluate_gate, gate
from .guardrails import GuardrailCheck, GuardrailEngine, default_checks
from .impact import ImpactEstimator
from .orchestrator import RemediationOrchestrator
from .rollback import RollbackManager

__all__ = [
    "ApprovalWorkflow",
    "LoggingApprovalWorkflow",
    "SnsApprovalWorkflow",
    "WebhookApprovalWorkflow",
    "EvaluationContext",
    "AwsClients",
    "ExecutorRegistry",
    "FixExecutor",
    "default_registry",
    "build_orchestrator",
    "evaluate_gate",
    "gate",
    "GuardrailCheck",
    "GuardrailEngine",
    "default_checks",
    "ImpactEstimator",
    "RemediationOrchestrator",
    "RollbackManager",
]
