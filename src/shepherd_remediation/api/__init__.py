"""
Transport-agnostic API handlers for the remediation engine.
"""

from .health import get_health_status
from .remediation import (
    apply_remediation,
    approve_remediation,
    error_response,
    get_audit_trail,
    get_remediation_status,
    list_pending_remediations,
    request_remediation_approval,
    rollback_remediation,
)

__all__ = [
    "get_health_status",
    "apply_remediation",
    "approve_remediation",
    "error_response",
    "get_audit_trail",
    "get_remediation_status",
    "list_pending_remediations",
    "request_remediation_approval",
    "rollback_remediation",
]
