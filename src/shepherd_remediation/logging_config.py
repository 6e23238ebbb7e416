"""
Process-wide logging setup for the remediation engine.

Library modules only call ``logging.getLogger(__name__)``; the entry points
(CLI, HTTP server) decide once where records go and how they look.

Functions:
    setup_logging: Install the console handler and optional rotating file.
    configure_engine_logging: Apply the ``logging`` section of an EngineConfig.
    configure_cli_logging: Map CLI verbosity flags on top of the config.
    reset_logging_config: Drop installed handlers (tests).

Example:
    >>> from shepherd_remediation.logging_config import configure_engine_logging
    >>> configure_engine_logging(EngineConfig.load())
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .constants import VALID_LOG_LEVELS
from .logging_context import JSONFormatter

if TYPE_CHECKING:
    from .config import EngineConfig

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SHORT_FORMAT = '%(name)s - %(levelname)s - %(message)s'

_LOGGING_CONFIGURED = False


def _level(name: Optional[str]) -> int:
    name = (name or 'INFO').upper()
    if name not in VALID_LOG_LEVELS:
        # Config validation reports the bad value; keep logging usable until then
        name = 'INFO'
    return getattr(logging, name)


def _clear_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str | Path] = None,
    include_timestamp: bool = True,
    json_format: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    force: bool = False,
) -> None:
    """
    Configure the root logger.

    Console output goes to stderr so JSON written to stdout by the CLI stays
    parseable. A second call only changes the level unless ``force`` is set,
    in which case handlers are rebuilt.

    Args:
        level: Log level name
        log_file: Also write to this file, rotated at ``max_bytes``
        include_timestamp: Prefix text records with the time
        json_format: One JSON object per record, including bound
            tenant_id, correlation_id and job_id
        max_bytes: Rotation size of the log file
        backup_count: Rotated files to keep
        force: Replace handlers installed by an earlier call
    """
    global _LOGGING_CONFIGURED

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(level))
    if _LOGGING_CONFIGURED and not force:
        return

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT if include_timestamp else SHORT_FORMAT)

    _clear_handlers(root_logger)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    _LOGGING_CONFIGURED = True
    root_logger.debug(f"Logging configured at {logging.getLevelName(root_logger.level)} level")


def configure_engine_logging(config: 'EngineConfig', force: bool = True) -> None:
    """Apply ``log_level``, ``log_file`` and ``log_json`` from an engine config."""
    setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        json_format=config.log_json,
        force=force,
    )


def reset_logging_config() -> None:
    """Remove installed handlers so the next setup starts clean."""
    global _LOGGING_CONFIGURED

    _clear_handlers(logging.getLogger())
    _LOGGING_CONFIGURED = False


def configure_cli_logging(
    verbose: bool = False,
    quiet: bool = False,
    json_format: bool = False,
    config: Optional['EngineConfig'] = None,
) -> None:
    """
    Configure logging for CLI usage.

    ``--verbose`` and ``--quiet`` win over the configured level and
    ``--json-logs`` turns JSON on even when the config leaves it off. Passing
    ``config`` rebuilds the handlers set up before the config was read.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show WARNING and above
        json_format: Emit structured JSON log lines
        config: Loaded engine configuration, if any
    """
    if quiet:
        level = 'WARNING'
    elif verbose:
        level = 'DEBUG'
    else:
        level = config.log_level if config else 'INFO'

    setup_logging(
        level=level,
        log_file=config.log_file if config else None,
        include_timestamp=verbose,
        json_format=json_format or bool(config and config.log_json),
        force=config is not None,
    )
