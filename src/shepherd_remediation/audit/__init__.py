"""
Audit trail for remediation decisions and state transitions.
"""

from .audit_trail import AuditBackend, AuditTrail, FileAuditBackend, InMemoryAuditBackend

__all__ = ["AuditBackend", "AuditTrail", "FileAuditBackend", "InMemoryAuditBackend"]
