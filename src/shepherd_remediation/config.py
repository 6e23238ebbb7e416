"""Configuration management for the remediation engine.

This module provides configuration loading and validation. Configuration can be
loaded from environment variables, YAML/TOML files, or direct instantiation.

Classes:
    EngineConfig: Main configuration dataclass with validation.

Example:
    >>> from shepherd_remediation.config import EngineConfig
    >>>
    >>> # Load from environment variables
    >>> config = EngineConfig.from_env()
    >>>
    >>> # Recommended: file with env overrides, then validate
    >>> config = EngineConfig.load()
    >>> config.validate()
"""
import os
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .constants import (
    DEFAULT_AUDIT_FILE,
    DEFAULT_AWS_REGION,
    DEFAULT_BUSINESS_HOURS_END,
    DEFAULT_BUSINESS_HOURS_START,
    DEFAULT_DYNAMODB_TABLE,
    DEFAULT_EXECUTOR_MAX_ATTEMPTS,
    DEFAULT_EXECUTOR_MAX_WAIT,
    DEFAULT_EXECUTOR_MIN_WAIT,
    DEFAULT_SQLITE_PATH,
    ENV_PREFIX,
    VALID_APPROVAL_CHANNELS,
    VALID_AUDIT_BACKENDS,
    VALID_LOG_LEVELS,
    VALID_STORE_BACKENDS,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _get_int_env(key: str, default: int) -> int:
    """Safely get a positive integer from an environment variable.

    Returns the default value if the variable is not set, cannot be parsed,
    or is not a positive integer.

    Example:
        >>> os.environ['REMEDIATION_EXECUTOR_MAX_ATTEMPTS'] = '6'
        >>> _get_int_env('REMEDIATION_EXECUTOR_MAX_ATTEMPTS', 4)
        6
    """
    value = os.getenv(key)
    if value is None:
        return default

    try:
        result = int(value)
        if result <= 0:
            logger.warning(
                f"Environment variable {key}={value} must be positive. Using default: {default}"
            )
            return default
        return result
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid integer. Using default: {default}"
        )
        return default


def _get_float_env(key: str, default: float) -> float:
    """Safely get a positive float from an environment variable."""
    value = os.getenv(key)
    if value is None:
        return default

    try:
        result = float(value)
    except ValueError:
        logger.warning(
            f"Environment variable {key}={value} is not a valid number. Using default: {default}"
        )
        return default
    if result <= 0:
        logger.warning(f"Environment variable {key}={value} must be positive. Using default: {default}")
        return default
    return result


@dataclass
class EngineConfig:
    """
    Configuration for the remediation engine.

    Configuration can be loaded from:
    1. Configuration files (YAML or TOML)
    2. Environment variables (override file settings)
    3. Direct instantiation with parameters

    Environment variables:
        REMEDIATION_STORE_BACKEND: memory, sqlite or dynamodb (default: "memory")
        REMEDIATION_SQLITE_PATH: SQLite database path
        REMEDIATION_DYNAMODB_TABLE: DynamoDB table name
        REMEDIATION_AUDIT_BACKEND: memory or file (default: "memory")
        REMEDIATION_AUDIT_FILE: JSONL audit file path
        REMEDIATION_APPROVAL_CHANNEL: log, sns or webhook (default: "log")
        REMEDIATION_SNS_TOPIC_ARN: Topic for sns approval notifications
        REMEDIATION_WEBHOOK_URL: URL for webhook approval notifications
        REMEDIATION_AWS_REGION: Region for engine-owned AWS clients
        REMEDIATION_AWS_ENDPOINT_URL: Endpoint override (local stacks)
        REMEDIATION_POLICY_FILE: Risk policy YAML (default: bundled policy)
        REMEDIATION_EXECUTOR_MAX_ATTEMPTS: AWS call attempts (default: 4)
        REMEDIATION_EXECUTOR_MIN_WAIT / _MAX_WAIT: Backoff bounds in seconds
        REMEDIATION_BUSINESS_HOURS_START / _END: UTC hours for the guardrail
        REMEDIATION_LOG_LEVEL: Logging level (default: "INFO")
        REMEDIATION_LOG_FILE: Log file path (optional)
        REMEDIATION_LOG_JSON: Emit JSON log lines (default: false)

    Config file locations (searched in order):
        ./shepherd-remediation.yaml, ./shepherd-remediation.toml
        ~/.shepherd-remediation.yaml, ~/.shepherd-remediation.toml
        /etc/shepherd-remediation.yaml, /etc/shepherd-remediation.toml
    """
    # Persistence
    store_backend: str = "memory"
    sqlite_path: str = DEFAULT_SQLITE_PATH
    dynamodb_table: str = DEFAULT_DYNAMODB_TABLE

    # Audit trail
    audit_backend: str = "memory"
    audit_file: str = DEFAULT_AUDIT_FILE

    # Approval notifications
    approval_channel: str = "log"
    sns_topic_arn: Optional[str] = None
    webhook_url: Optional[str] = None

    # AWS
    aws_region: str = DEFAULT_AWS_REGION
    aws_endpoint_url: Optional[str] = None

    # Risk policy
    policy_file: Optional[str] = None

    # Executor retry
    executor_max_attempts: int = DEFAULT_EXECUTOR_MAX_ATTEMPTS
    executor_min_wait: float = DEFAULT_EXECUTOR_MIN_WAIT
    executor_max_wait: float = DEFAULT_EXECUTOR_MAX_WAIT

    # Guardrails
    business_hours_start: int = DEFAULT_BUSINESS_HOURS_START
    business_hours_end: int = DEFAULT_BUSINESS_HOURS_END

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If any configuration value is invalid
        """
        errors = []

        if self.store_backend not in VALID_STORE_BACKENDS:
            errors.append(
                f"store_backend must be one of {sorted(VALID_STORE_BACKENDS)}, got '{self.store_backend}'"
            )
        if self.audit_backend not in VALID_AUDIT_BACKENDS:
            errors.append(
                f"audit_backend must be one of {sorted(VALID_AUDIT_BACKENDS)}, got '{self.audit_backend}'"
            )
        if self.approval_channel not in VALID_APPROVAL_CHANNELS:
            errors.append(
                f"approval_channel must be one of {sorted(VALID_APPROVAL_CHANNELS)}, "
                f"got '{self.approval_channel}'"
            )

        if self.approval_channel == "sns" and not self.sns_topic_arn:
            errors.append("sns_topic_arn must be specified when approval_channel is 'sns'")
        if self.approval_channel == "webhook" and not self.webhook_url:
            errors.append("webhook_url must be specified when approval_channel is 'webhook'")

        if self.executor_max_attempts <= 0:
            errors.append(f"executor_max_attempts must be positive, got {self.executor_max_attempts}")
        if self.executor_min_wait < 0:
            errors.append(f"executor_min_wait must not be negative, got {self.executor_min_wait}")
        if self.executor_max_wait < self.executor_min_wait:
            errors.append(
                f"executor_max_wait ({self.executor_max_wait}) must be >= "
                f"executor_min_wait ({self.executor_min_wait})"
            )

        if not (0 <= self.business_hours_start < self.business_hours_end <= 24):
            errors.append(
                "business hours must satisfy 0 <= start < end <= 24, "
                f"got {self.business_hours_start}-{self.business_hours_end}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.log_level}'"
            )

        if errors:
            raise ConfigurationError("Configuration validation failed:\n  - " + "\n  - ".join(errors))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Build a config from flat field values, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """
        Create configuration from environment variables only.

        Returns:
            EngineConfig instance populated from environment variables
        """
        p = ENV_PREFIX
        return cls(
            store_backend=os.getenv(f"{p}STORE_BACKEND", "memory"),
            sqlite_path=os.getenv(f"{p}SQLITE_PATH", DEFAULT_SQLITE_PATH),
            dynamodb_table=os.getenv(f"{p}DYNAMODB_TABLE", DEFAULT_DYNAMODB_TABLE),
            audit_backend=os.getenv(f"{p}AUDIT_BACKEND", "memory"),
            audit_file=os.getenv(f"{p}AUDIT_FILE", DEFAULT_AUDIT_FILE),
            approval_channel=os.getenv(f"{p}APPROVAL_CHANNEL", "log"),
            sns_topic_arn=os.getenv(f"{p}SNS_TOPIC_ARN"),
            webhook_url=os.getenv(f"{p}WEBHOOK_URL"),
            aws_region=os.getenv(f"{p}AWS_REGION", DEFAULT_AWS_REGION),
            aws_endpoint_url=os.getenv(f"{p}AWS_ENDPOINT_URL"),
            policy_file=os.getenv(f"{p}POLICY_FILE"),
            executor_max_attempts=_get_int_env(f"{p}EXECUTOR_MAX_ATTEMPTS", DEFAULT_EXECUTOR_MAX_ATTEMPTS),
            executor_min_wait=_get_float_env(f"{p}EXECUTOR_MIN_WAIT", DEFAULT_EXECUTOR_MIN_WAIT),
            executor_max_wait=_get_float_env(f"{p}EXECUTOR_MAX_WAIT", DEFAULT_EXECUTOR_MAX_WAIT),
            business_hours_start=_get_int_env(f"{p}BUSINESS_HOURS_START", DEFAULT_BUSINESS_HOURS_START),
            business_hours_end=_get_int_env(f"{p}BUSINESS_HOURS_END", DEFAULT_BUSINESS_HOURS_END),
            log_level=os.getenv(f"{p}LOG_LEVEL", "INFO"),
            log_file=os.getenv(f"{p}LOG_FILE"),
            log_json=os.getenv(f"{p}LOG_JSON", "false").lower() in ("true", "1", "yes"),
        )

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> 'EngineConfig':
        """
        Create configuration from file with environment variable overrides.

        An explicit ``config_path`` that cannot be read is an error. When the
        standard locations are searched instead, a broken file is logged and
        environment variables are used.

        Raises:
            FileNotFoundError: If explicit config_path doesn't exist
            ConfigurationError: If explicit config_path cannot be parsed
        """
        from .config_loader import load_config_with_overrides

        if config_path:
            return cls.from_dict(load_config_with_overrides(config_path))

        try:
            return cls.from_dict(load_config_with_overrides())
        except (ConfigurationError, OSError) as e:
            logger.error(f"Failed to load configuration from file: {e}")
            logger.warning("Falling back to environment variable configuration")
            return cls.from_env()

    @classmethod
    def load(cls, config_path: Optional[str] = None, use_file: bool = True) -> 'EngineConfig':
        """
        Load configuration with automatic fallback.

        This is the recommended method for loading configuration.

        Example:
            >>> config = EngineConfig.load()                 # file, then env
            >>> config = EngineConfig.load("remediation.yaml")
            >>> config = EngineConfig.load(use_file=False)   # env only
        """
        if use_file:
            return cls.from_file(config_path)
        else:
            return cls.from_env()
