"""
Configuration file loader for the remediation engine.

Supports loading configuration from YAML and TOML files with environment variable
overrides and a standard search path.

Config files are sectioned::

    store:
      backend: dynamodb
      dynamodb_table: remediation-jobs
    approval:
      channel: sns
      sns_topic_arn: arn:aws:sns:us-east-1:123456789012:approvals
    logging:
      level: DEBUG
"""

import os
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import ENV_PREFIX
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "shepherd-remediation"


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# (section, key) in the file -> flat EngineConfig field
SECTION_FIELDS: Dict[Tuple[str, str], str] = {
    ("store", "backend"): "store_backend",
    ("store", "sqlite_path"): "sqlite_path",
    ("store", "dynamodb_table"): "dynamodb_table",
    ("audit", "backend"): "audit_backend",
    ("audit", "file"): "audit_file",
    ("approval", "channel"): "approval_channel",
    ("approval", "sns_topic_arn"): "sns_topic_arn",
    ("approval", "webhook_url"): "webhook_url",
    ("aws", "region"): "aws_region",
    ("aws", "endpoint_url"): "aws_endpoint_url",
    ("policy", "file"): "policy_file",
    ("executor", "max_attempts"): "executor_max_attempts",
    ("executor", "min_wait"): "executor_min_wait",
    ("executor", "max_wait"): "executor_max_wait",
    ("guardrails", "business_hours_start"): "business_hours_start",
    ("guardrails", "business_hours_end"): "business_hours_end",
    ("logging", "level"): "log_level",
    ("logging", "file"): "log_file",
    ("logging", "json"): "log_json",
}

# REMEDIATION_<NAME> -> (section, key, parser)
ENV_VARS: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "STORE_BACKEND": ("store", "backend", str),
    "SQLITE_PATH": ("store", "sqlite_path", str),
    "DYNAMODB_TABLE": ("store", "dynamodb_table", str),
    "AUDIT_BACKEND": ("audit", "backend", str),
    "AUDIT_FILE": ("audit", "file", str),
    "APPROVAL_CHANNEL": ("approval", "channel", str),
    "SNS_TOPIC_ARN": ("approval", "sns_topic_arn", str),
    "WEBHOOK_URL": ("approval", "webhook_url", str),
    "AWS_REGION": ("aws", "region", str),
    "AWS_ENDPOINT_URL": ("aws", "endpoint_url", str),
    "POLICY_FILE": ("policy", "file", str),
    "EXECUTOR_MAX_ATTEMPTS": ("executor", "max_attempts", int),
    "EXECUTOR_MIN_WAIT": ("executor", "min_wait", float),
    "EXECUTOR_MAX_WAIT": ("executor", "max_wait", float),
    "BUSINESS_HOURS_START": ("guardrails", "business_hours_start", int),
    "BUSINESS_HOURS_END": ("guardrails", "business_hours_end", int),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FILE": ("logging", "file", str),
    "LOG_JSON": ("logging", "json", _to_bool),
}


def load_yaml_file(path: Path) -> dict:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ConfigurationError: If YAML parsing fails
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML config file {path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return config


def load_toml_file(path: Path) -> dict:
    """
    Load configuration from a TOML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ConfigurationError: If TOML parsing fails
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse TOML config file {path}: {e}") from e


def load_config_file(path: str | Path) -> dict:
    """
    Load configuration from a YAML or TOML file.

    The file format is determined by the file extension (.yaml, .yml, or .toml).

    Raises:
        ConfigurationError: If the extension is unsupported or parsing fails
        FileNotFoundError: If file doesn't exist
    """
    file_path = Path(path)
    suffix = file_path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        return load_yaml_file(file_path)
    elif suffix == '.toml':
        return load_toml_file(file_path)
    else:
        raise ConfigurationError(
            f"Unsupported config file format: {suffix}. "
            "Supported formats: .yaml, .yml, .toml"
        )


def find_config_file() -> Optional[Path]:
    """
    Search for a configuration file in standard locations.

    Search order:
    1. ./shepherd-remediation.yaml
    2. ./shepherd-remediation.toml
    3. ~/.shepherd-remediation.yaml
    4. ~/.shepherd-remediation.toml
    5. /etc/shepherd-remediation.yaml
    6. /etc/shepherd-remediation.toml

    Returns:
        Path to the first configuration file found, or None if no file is found
    """
    search_paths = [
        Path.cwd() / f"{CONFIG_FILE_NAME}.yaml",
        Path.cwd() / f"{CONFIG_FILE_NAME}.toml",
        Path.home() / f".{CONFIG_FILE_NAME}.yaml",
        Path.home() / f".{CONFIG_FILE_NAME}.toml",
        Path(f"/etc/{CONFIG_FILE_NAME}.yaml"),
        Path(f"/etc/{CONFIG_FILE_NAME}.toml"),
    ]

    for path in search_paths:
        if path.exists() and path.is_file():
            logger.info(f"Found configuration file: {path}")
            return path

    logger.debug("No configuration file found in standard locations")
    return None


def get_env_config() -> dict:
    """
    Extract sectioned configuration from ``REMEDIATION_*`` environment variables.

    Values that fail to parse are logged and ignored.
    """
    config: Dict[str, Dict[str, Any]] = {}

    for name, (section, key, parse) in ENV_VARS.items():
        env_key = f"{ENV_PREFIX}{name}"
        raw = os.getenv(env_key)
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError:
            logger.warning(f"Invalid {env_key}={raw!r}, ignoring")
            continue
        config.setdefault(section, {})[key] = value

    return config


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries, with override values taking precedence.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def flatten_config(config: dict) -> dict:
    """
    Flatten a sectioned configuration to EngineConfig field names.

    Unknown sections and keys are logged and dropped.
    """
    flat = {}

    for section, values in config.items():
        if not isinstance(values, dict):
            logger.warning(f"Ignoring non-mapping config section '{section}'")
            continue
        for key, value in values.items():
            field_name = SECTION_FIELDS.get((section, key))
            if field_name is None:
                logger.warning(f"Ignoring unknown config key '{section}.{key}'")
                continue
            flat[field_name] = value

    return flat


def merge_config(file_config: dict, env_config: dict) -> dict:
    """
    Merge file-based and environment-based configuration.

    Environment variables take precedence over file-based configuration.

    Returns:
        Merged configuration dictionary (flattened)
    """
    merged = deep_merge(file_config, env_config)
    return flatten_config(merged)


def load_config_with_overrides(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file.
                    If None, searches standard locations.

    Returns:
        Dictionary of EngineConfig field values

    Raises:
        FileNotFoundError: If explicit config_path is provided but doesn't exist
        ConfigurationError: If config parsing fails
    """
    file_config = {}

    if config_path:
        file_config = load_config_file(config_path)
        logger.info(f"Loaded configuration from: {config_path}")
    else:
        found_path = find_config_file()
        if found_path:
            file_config = load_config_file(found_path)
            logger.info(f"Loaded configuration from: {found_path}")

    env_config = get_env_config()
    if env_config:
        logger.info("Applying environment variable overrides")

    return merge_config(file_config, env_config)
