"""
Shared constants for the remediation engine.

Defaults for configuration, resource and remediation type identifiers,
and the indicators used by guardrails to recognise production resources.
"""

# Environment variable prefix for configuration overrides
ENV_PREFIX = "REMEDIATION_"

# Configuration defaults
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_SQLITE_PATH = "remediation_jobs.db"
DEFAULT_DYNAMODB_TABLE = "remediation-jobs"
DEFAULT_AUDIT_FILE = "remediation_audit.jsonl"
DEFAULT_EXECUTOR_MAX_ATTEMPTS = 4
DEFAULT_EXECUTOR_MIN_WAIT = 0.5
DEFAULT_EXECUTOR_MAX_WAIT = 8.0
DEFAULT_BUSINESS_HOURS_START = 9
DEFAULT_BUSINESS_HOURS_END = 17

VALID_STORE_BACKENDS = {"memory", "sqlite", "dynamodb"}
VALID_AUDIT_BACKENDS = {"memory", "file"}
VALID_APPROVAL_CHANNELS = {"log", "sns", "webhook"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Resource types
S3_BUCKET = "S3_BUCKET"
IAM_ROLE = "IAM_ROLE"
SECURITY_GROUP = "SECURITY_GROUP"
CLOUDTRAIL = "CLOUDTRAIL"
KMS_KEY = "KMS_KEY"

# Remediation types
ENABLE_BUCKET_ENCRYPTION = "ENABLE_BUCKET_ENCRYPTION"
ENABLE_BUCKET_VERSIONING = "ENABLE_BUCKET_VERSIONING"
BLOCK_PUBLIC_ACCESS = "BLOCK_PUBLIC_ACCESS"
ATTACH_SECURITY_POLICY = "ATTACH_SECURITY_POLICY"
RESTRICT_SSH_ACCESS = "RESTRICT_SSH_ACCESS"
REMOVE_OVERLY_PERMISSIVE_RULE = "REMOVE_OVERLY_PERMISSIVE_RULE"
ENABLE_LOG_FILE_VALIDATION = "ENABLE_LOG_FILE_VALIDATION"
ENABLE_KEY_ROTATION = "ENABLE_KEY_ROTATION"

# Guardrail indicators
PRODUCTION_NAME_INDICATORS = ("prod", "production", "live")
DESTRUCTIVE_OPERATIONS = ("DELETE_RESOURCE", "REMOVE_POLICY", "REVOKE_ACCESS", "DISABLE_SERVICE")
IRREVERSIBLE_OPERATIONS = ("DELETE", "TERMINATE", "DESTROY")

# Default CIDR used when restricting world-open SSH
DEFAULT_SSH_CIDR = "10.0.0.0/8"
WORLD_CIDR = "0.0.0.0/0"
