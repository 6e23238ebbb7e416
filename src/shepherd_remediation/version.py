"""
Version information for the remediation engine.

Single source of truth for version information across the codebase.
"""

__version__ = "1.2.0"

VERSION_INFO = {
    "version": __version__,
    "api_version": "v1",
    "platform": "Compliance Shepherd",
    "name": "shepherd-remediation",
    "full_name": "Compliance Shepherd - Remediation Workflow Engine",
}


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_info() -> dict:
    """Return detailed version information."""
    return VERSION_INFO.copy()
