"""
HTTP transport for the remediation engine.
"""
import logging
from typing import Any, Dict, Optional

from ..api import health as health_api
from ..api import remediation as api
from ..config import EngineConfig
from ..logging_config import configure_engine_logging
from ..remediation.factory import build_orchestrator
from ..remediation.orchestrator import RemediationOrchestrator

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"
ACTOR_HEADER = "X-Actor"


def create_app(
    orchestrator: Optional[RemediationOrchestrator] = None,
    config: Optional[EngineConfig] = None,
    debug: bool = False,
):
    """
    Create Flask application exposing the remediation operations.

    Args:
        orchestrator: Pre-built orchestrator (built from ``config`` when None)
        config: Engine configuration used to build the orchestrator
        debug: Enable debug mode

    Returns:
        Flask app instance

    Raises:
        ImportError: If Flask is not installed
    """
    try:
        from flask import Flask, jsonify, request
    except ImportError:
        raise ImportError(
            "Flask not installed. Install with: pip install 'shepherd-remediation[web]'"
        )

    if orchestrator is None:
        orchestrator = build_orchestrator(config)

    app = Flask(__name__)
    app.config['DEBUG'] = debug
    app.extensions['remediation_orchestrator'] = orchestrator

    def respond(result):
        status, body = result
        response = jsonify(body)
        response.status_code = status
        response.headers[CORRELATION_HEADER] = body.get("correlationId", "")
        return response

    def correlation_id() -> Optional[str]:
        return request.headers.get(CORRELATION_HEADER)

    def json_body() -> Any:
        return request.get_json(silent=True)

    def actor(body: Any, key: str) -> Optional[str]:
        if isinstance(body, dict) and body.get(key):
            return str(body[key])
        return request.headers.get(ACTOR_HEADER)

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses."""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        return response

    @app.route('/remediation/apply', methods=['POST'])
    async def apply_remediation():
        return respond(await api.apply_remediation(orchestrator, json_body(), correlation_id()))

    @app.route('/remediation/request', methods=['POST'])
    async def request_remediation_approval():
        return respond(
            await api.request_remediation_approval(orchestrator, json_body(), correlation_id())
        )

    @app.route('/remediation/pending', methods=['GET'])
    async def list_pending_remediations():
        tenant_id = request.args.get('tenantId')
        return respond(await api.list_pending_remediations(orchestrator, tenant_id, correlation_id()))

    @app.route('/remediation/<job_id>', methods=['GET'])
    async def get_remediation_status(job_id: str):
        return respond(await api.get_remediation_status(orchestrator, job_id, correlation_id()))

    @app.route('/remediation/<job_id>/approve', methods=['PUT'])
    async def approve_remediation(job_id: str):
        approver = actor(json_body(), 'approver')
        return respond(
            await api.approve_remediation(orchestrator, job_id, approver, correlation_id())
        )

    @app.route('/remediation/<job_id>/rollback', methods=['PUT'])
    async def rollback_remediation(job_id: str):
        requested_by = actor(json_body(), 'actor')
        return respond(
            await api.rollback_remediation(orchestrator, job_id, requested_by, correlation_id())
        )

    @app.route('/remediation/<job_id>/audit', methods=['GET'])
    async def get_audit_trail(job_id: str):
        since = request.args.get('since')
        return respond(await api.get_audit_trail(orchestrator, job_id, since, correlation_id()))

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify(health_api.get_health_status())

    @app.errorhandler(404)
    def not_found(_error) -> Any:
        body: Dict[str, Any] = {"error": {"code": "NOT_FOUND", "message": "Route not found"}}
        return jsonify(body), 404

    return app


def run_server(host: str = '127.0.0.1', port: int = 8080, debug: bool = False,
               config: Optional[EngineConfig] = None):
    """
    Run the remediation HTTP server.

    Args:
        host: Host to bind to
        port: Port to listen on
        debug: Enable debug mode
        config: Engine configuration
    """
    config = config or EngineConfig.load()
    configure_engine_logging(config)
    app = create_app(config=config, debug=debug)
    logger.info(f"Starting remediation engine on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
