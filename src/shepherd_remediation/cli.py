"""
Command line interface for the remediation engine.

Each subcommand maps onto one caller-facing operation and prints the JSON
response body on stdout; logs go to stderr.
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from . import __version__
from .api import remediation as api
from .config import EngineConfig
from .exceptions import ConfigurationError
from .logging_config import configure_cli_logging
from .remediation.factory import build_orchestrator

logger = logging.getLogger(__name__)


def load_request(source: str) -> Any:
    """
    Read a JSON request body from a file path, or stdin when ``source`` is "-".

    Raises:
        ValueError: If the input is not valid JSON
    """
    try:
        if source == "-":
            return json.load(sys.stdin)
        with open(Path(source), "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {'stdin' if source == '-' else source}: {e}") from e


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.load(args.config_file) if getattr(args, "config_file", None) else EngineConfig.load()
    configure_cli_logging(verbose=args.verbose, quiet=args.quiet, json_format=args.json_logs, config=config)
    return config


def _emit(result: Tuple[int, Dict[str, Any]]) -> int:
    status, body = result
    print(json.dumps(body, indent=2, default=str))
    return 0 if status < 400 else 1


def _run(args: argparse.Namespace, operation) -> int:
    """Build an orchestrator from config and run one API handler against it."""
    try:
        orchestrator = build_orchestrator(_load_config(args))
    except (ConfigurationError, OSError) as e:
        logger.error(f"Failed to initialise remediation engine: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    async def run() -> Tuple[int, Dict[str, Any]]:
        try:
            return await operation(orchestrator)
        finally:
            await orchestrator.store.close()
            await orchestrator.audit.close()

    return _emit(asyncio.run(run()))


def _submission(args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    try:
        data = load_request(args.input)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read request: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return None
    if isinstance(data, dict):
        if args.dry_run:
            data["dryRun"] = True
        if getattr(args, "auto_approve", False):
            data["autoApprove"] = True
    return data


def handle_apply(args: argparse.Namespace) -> int:
    """
    Handle the apply subcommand.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    data = _submission(args)
    if data is None:
        return 1
    return _run(args, lambda o: api.apply_remediation(o, data, args.correlation_id))


def handle_request(args: argparse.Namespace) -> int:
    """Handle the request subcommand (always routes to approval)."""
    data = _submission(args)
    if data is None:
        return 1
    return _run(args, lambda o: api.request_remediation_approval(o, data, args.correlation_id))


def handle_approve(args: argparse.Namespace) -> int:
    return _run(args, lambda o: api.approve_remediation(o, args.job_id, args.approver, args.correlation_id))


def handle_rollback(args: argparse.Namespace) -> int:
    return _run(args, lambda o: api.rollback_remediation(o, args.job_id, args.actor, args.correlation_id))


def handle_status(args: argparse.Namespace) -> int:
    return _run(args, lambda o: api.get_remediation_status(o, args.job_id, args.correlation_id))


def handle_pending(args: argparse.Namespace) -> int:
    return _run(args, lambda o: api.list_pending_remediations(o, args.tenant_id, args.correlation_id))


def handle_audit(args: argparse.Namespace) -> int:
    return _run(args, lambda o: api.get_audit_trail(o, args.job_id, args.since, args.correlation_id))


def handle_version(args: argparse.Namespace) -> int:
    """
    Handle the version subcommand.

    Returns:
        Exit code (0 for success)
    """
    print(f"shepherd-remediation version {__version__}")
    print("Compliance Shepherd - Remediation Workflow Engine")

    if args.verbose:
        print(f"\nPython: {sys.version}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """
    Handle the config subcommand.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config = _load_config(args)
    except (ConfigurationError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.action == "validate":
        try:
            config.validate()
        except ConfigurationError as e:
            print(f"ERROR: Configuration validation failed - {e}", file=sys.stderr)
            return 1
        print("Configuration is valid")
        return 0

    print(json.dumps(config.to_dict(), indent=2))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser with subcommands.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="shepherd-remediate",
        description="Compliance Shepherd remediation workflow engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply a fix (auto-applies LOW risk fixes, otherwise waits for approval)
  %(prog)s apply request.json
  cat request.json | %(prog)s apply -

  # Always wait for approval, then approve
  %(prog)s request request.json
  %(prog)s approve <job-id> --approver alice

  # Inspect and undo
  %(prog)s status <job-id>
  %(prog)s pending --tenant-id tenant-1
  %(prog)s audit <job-id>
  %(prog)s rollback <job-id>

Environment Variables:
  REMEDIATION_STORE_BACKEND     memory, sqlite or dynamodb (default: memory)
  REMEDIATION_SQLITE_PATH       SQLite database file
  REMEDIATION_AUDIT_BACKEND     memory or file (default: memory)
  REMEDIATION_APPROVAL_CHANNEL  log, sns or webhook (default: log)
  REMEDIATION_AWS_REGION        AWS region (default: us-east-1)
  REMEDIATION_POLICY_FILE       Risk policy YAML file
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Enable quiet mode (only warnings and errors)"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON log lines"
    )
    parser.add_argument(
        "--config-file",
        metavar="PATH",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--correlation-id",
        metavar="ID",
        help="Correlation id to carry through logs and audit entries"
    )

    subparsers = parser.add_subparsers(
        dest="subcommand",
        help="Available subcommands"
    )

    # ========================================
    # APPLY / REQUEST subcommands
    # ========================================
    for name, handler, help_text in (
        ("apply", handle_apply, "Submit a remediation (auto-applied when policy allows)"),
        ("request", handle_request, "Submit a remediation and wait for approval"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "input",
            nargs="?",
            default="-",
            help="Path to JSON request body, or - for stdin (default: -)"
        )
        sub.add_argument(
            "--dry-run",
            action="store_true",
            help="Report the would-be change without mutating the resource"
        )
        if name == "apply":
            sub.add_argument(
                "--auto-approve",
                action="store_true",
                help="Skip risk-based approval when no HIGH severity guardrail fails"
            )
        sub.set_defaults(func=handler)

    # ========================================
    # APPROVE subcommand
    # ========================================
    approve_parser = subparsers.add_parser("approve", help="Approve a pending remediation and execute it")
    approve_parser.add_argument("job_id", help="Remediation job id")
    approve_parser.add_argument("--approver", help="Approver recorded on the job")
    approve_parser.set_defaults(func=handle_approve)

    # ========================================
    # ROLLBACK subcommand
    # ========================================
    rollback_parser = subparsers.add_parser("rollback", help="Undo an applied remediation")
    rollback_parser.add_argument("job_id", help="Remediation job id")
    rollback_parser.add_argument("--actor", help="User requesting the rollback")
    rollback_parser.set_defaults(func=handle_rollback)

    # ========================================
    # STATUS / PENDING / AUDIT subcommands
    # ========================================
    status_parser = subparsers.add_parser("status", help="Show a remediation job")
    status_parser.add_argument("job_id", help="Remediation job id")
    status_parser.set_defaults(func=handle_status)

    pending_parser = subparsers.add_parser("pending", help="List remediations awaiting approval")
    pending_parser.add_argument("--tenant-id", help="Only list jobs for this tenant")
    pending_parser.set_defaults(func=handle_pending)

    audit_parser = subparsers.add_parser("audit", help="Show the audit trail of a job")
    audit_parser.add_argument("job_id", help="Remediation job id")
    audit_parser.add_argument("--since", help="Only entries at or after this timestamp")
    audit_parser.set_defaults(func=handle_audit)

    # ========================================
    # VERSION / CONFIG subcommands
    # ========================================
    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=handle_version)

    config_parser = subparsers.add_parser(
        "config",
        help="Show or validate configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s show
  %(prog)s validate
        """
    )
    config_parser.add_argument(
        "action",
        nargs="?",
        choices=["show", "validate"],
        default="show",
        help="Config action (default: show)"
    )
    config_parser.set_defaults(func=handle_config)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_cli_logging(verbose=args.verbose, quiet=args.quiet, json_format=args.json_logs)

    if not hasattr(args, 'func'):
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = args.func(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
