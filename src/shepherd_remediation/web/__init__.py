"""
HTTP transport for the remediation engine (requires the ``web`` extra).
"""

from .app import create_app, run_server

__all__ = ["create_app", "run_server"]
