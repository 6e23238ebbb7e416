"""
Health check API endpoints.

Provides health and version information for monitoring.
"""

import time
from typing import Dict

from ..version import get_version_info

# Track server start time
_start_time = time.time()


def get_health_status() -> Dict:
    """
    Get health check status.

    Returns:
        Health status dictionary
    """
    uptime = time.time() - _start_time
    info = get_version_info()

    return {
        "status": "healthy",
        "uptime_seconds": round(uptime, 2),
        "service": info["name"],
        "version": info["version"],
    }
