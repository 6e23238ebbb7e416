"""
Versioned remediation risk policy.

The policy table is the tuning surface for operators: it maps remediation
types to base risk tiers, defines what makes a resource critical, and lists
the remediation types a tenant always wants a human to approve.
"""
import logging
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from ..exceptions import ConfigurationError
from ..models import ResourceSnapshot, RiskLevel, Severity

logger = logging.getLogger(__name__)

DEFAULT_POLICY_RESOURCE = "default_policy.yaml"


class CriticalityRules(BaseModel):
    """How to recognise critical resources and how far to escalate them."""

    production_tag_keys: List[str] = Field(default_factory=lambda: ["environment", "env", "stage", "criticality"])
    production_tag_values: List[str] = Field(default_factory=lambda: ["prod", "production", "critical"])
    escalate_on_production: int = Field(default=1, ge=0)
    fan_in_threshold: int = Field(default=10, ge=1)

    def is_production(self, tags: Dict[str, str]) -> bool:
        """True if any production tag key carries a production value."""
        keys = {k.lower() for k in self.production_tag_keys}
        values = [v.lower() for v in self.production_tag_values]
        for key, value in tags.items():
            if key.lower() in keys and any(marker in str(value).lower() for marker in values):
                return True
        return False


class TenantPolicy(BaseModel):
    """Per-tenant policy overrides."""

    require_approval_for: List[str] = Field(default_factory=list)


class RemediationPolicy(BaseModel):
    """
    Risk tiering and approval policy loaded from a versioned YAML artifact.

    Attributes:
        version: Policy artifact version, recorded in audit details
        default_risk: Tier for remediation types missing from risk_tiers
        risk_tiers: Remediation type -> base tier
        resource_type_floor: Resource type -> minimum tier
        criticality: Production/fan-in escalation rules
        approval_severity_threshold: Guardrail failures at or above this
            severity force manual approval
        require_approval_for: Remediation types gated for every tenant
        tenants: Tenant id -> overrides
    """

    version: str
    default_risk: RiskLevel = RiskLevel.MEDIUM
    risk_tiers: Dict[str, RiskLevel] = Field(default_factory=dict)
    resource_type_floor: Dict[str, RiskLevel] = Field(default_factory=dict)
    criticality: CriticalityRules = Field(default_factory=CriticalityRules)
    approval_severity_threshold: Severity = Severity.HIGH
    require_approval_for: List[str] = Field(default_factory=list)
    tenants: Dict[str, TenantPolicy] = Field(default_factory=dict)

    @field_validator("risk_tiers", "resource_type_floor", mode="before")
    @classmethod
    def upper_keys(cls, v):
        if isinstance(v, dict):
            return {str(k).upper(): val for k, val in v.items()}
        return v

    @field_validator("require_approval_for")
    @classmethod
    def upper_types(cls, v: List[str]) -> List[str]:
        return [t.upper() for t in v]

    def base_risk(self, remediation_type: str) -> RiskLevel:
        return self.risk_tiers.get(remediation_type.upper(), self.default_risk)

    def risk_for(self, remediation_type: str, resource_type: str, snapshot: ResourceSnapshot) -> RiskLevel:
        """
        Assign a risk tier from the policy table and resource criticality.

        Base tier by remediation type, raised to the resource type floor, then
        escalated for production-tagged or high fan-in resources.
        """
        risk = self.base_risk(remediation_type)

        floor = self.resource_type_floor.get(resource_type.upper())
        if floor is not None:
            risk = RiskLevel.highest(risk, floor)

        rules = self.criticality
        if rules.is_production(snapshot.tags) or snapshot.dependents >= rules.fan_in_threshold:
            risk = risk.escalate(rules.escalate_on_production)

        return risk

    def requires_approval(self, tenant_id: str, remediation_type: str) -> bool:
        """Whether the tenant's policy gates this remediation type."""
        remediation_type = remediation_type.upper()
        if remediation_type in self.require_approval_for:
            return True
        tenant = self.tenants.get(tenant_id)
        return tenant is not None and remediation_type in {t.upper() for t in tenant.require_approval_for}


def load_policy(path: Optional[str | Path] = None) -> RemediationPolicy:
    """
    Load a remediation policy from YAML.

    Args:
        path: Policy file; the bundled default policy when None

    Returns:
        Validated RemediationPolicy

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    try:
        if path is None:
            text = resources.files(__package__).joinpath(DEFAULT_POLICY_RESOURCE).read_text(encoding="utf-8")
            source = f"bundled {DEFAULT_POLICY_RESOURCE}"
        else:
            text = Path(path).read_text(encoding="utf-8")
            source = str(path)
        data = yaml.safe_load(text) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read remediation policy: {e}") from e

    try:
        policy = RemediationPolicy.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid remediation policy in {source}: {e}") from e

    logger.info(f"Loaded remediation policy version {policy.version} from {source}")
    return policy
