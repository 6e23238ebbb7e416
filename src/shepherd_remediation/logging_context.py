"""
Structured logging with explicitly bound correlation context.

Context (tenant_id, correlation_id, job_id) is passed through every call and
bound onto a logger adapter; nothing is kept in module or task globals.

Example:
    >>> log = bind_logger(logger, tenant_id='tenant-1', correlation_id='corr-1')
    >>> log = log.bind(job_id='job-42')
    >>> log.info("Applying remediation")
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

CONTEXT_FIELDS = ('tenant_id', 'correlation_id', 'job_id', 'actor')


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that injects its bound context into every record.

    Text output prefixes the message with the context; JSON output reads the
    fields from the record's extras.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        context = {k: v for k, v in (self.extra or {}).items() if v is not None}
        extra = dict(kwargs.get('extra') or {})
        extra.update(context)
        kwargs['extra'] = extra

        if context:
            prefix = " ".join(f"{k}={v}" for k, v in context.items())
            msg = f"[{prefix}] {msg}"
        return msg, kwargs

    def bind(self, **kwargs: Any) -> "ContextualLogger":
        """Return a new adapter with additional context fields."""
        context = dict(self.extra or {})
        context.update(kwargs)
        return ContextualLogger(self.logger, context)

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra or {})


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON objects with consistent fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def bind_logger(
    logger: logging.Logger | ContextualLogger,
    tenant_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    job_id: Optional[str] = None,
    **kwargs: Any,
) -> ContextualLogger:
    """
    Bind call context onto a logger.

    Args:
        logger: Module logger or an already bound adapter
        tenant_id: Owning tenant
        correlation_id: Request correlation id
        job_id: Remediation job id
        **kwargs: Additional context fields

    Returns:
        ContextualLogger carrying the merged context
    """
    context: Dict[str, Any] = {}
    if isinstance(logger, ContextualLogger):
        context.update(logger.context)
        logger = logger.logger
    for key, value in (('tenant_id', tenant_id), ('correlation_id', correlation_id), ('job_id', job_id)):
        if value is not None:
            context[key] = value
    context.update({k: v for k, v in kwargs.items() if v is not None})
    return ContextualLogger(logger, context)
