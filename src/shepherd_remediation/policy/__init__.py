"""Remediation risk policy."""

from .policy import CriticalityRules, RemediationPolicy, TenantPolicy, load_policy

__all__ = ["CriticalityRules", "RemediationPolicy", "TenantPolicy", "load_policy"]
