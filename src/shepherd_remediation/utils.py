"""
Utility functions for the remediation engine.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a random identifier for jobs and audit entries."""
    return str(uuid.uuid4())


def new_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Return ``correlation_id`` or a fresh one when it is missing.

    Args:
        correlation_id: Identifier supplied by the caller, if any

    Returns:
        A non-empty correlation id
    """
    return correlation_id or f"corr-{uuid.uuid4().hex[:16]}"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp into a timezone-aware UTC datetime.

    Accepts datetimes and ISO-8601 or free-form date strings. Naive values
    are assumed to be UTC.

    Args:
        value: datetime or string

    Returns:
        Aware datetime in UTC

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def tags_to_dict(tags: Optional[list], key_field: str = "Key", value_field: str = "Value") -> Dict[str, str]:
    """
    Convert an AWS tag list (``[{"Key": ..., "Value": ...}]``) to a dict.

    KMS uses ``TagKey``/``TagValue``; pass the field names accordingly.
    """
    result: Dict[str, str] = {}
    for tag in tags or []:
        key = tag.get(key_field)
        if key is not None:
            result[key] = tag.get(value_field, "")
    return result
