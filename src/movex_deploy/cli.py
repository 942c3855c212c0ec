"""Command-line interface for MoveX deployments."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Optional, Sequence

from .config import REPOSITORY_KEYS, DeploySettings, load_settings
from .errors import DeployError
from .local.session import read_tail
from .orchestrator import StepPipeline, UnknownStep
from .utils.logging import configure_logging, get_logger
from .workflow import DeploymentWorkflow

logger = get_logger(__name__)

# Operations that run without an env file fall back to defaults
OPTIONAL_CONFIG_COMMANDS = {"setup", "health-check", "logs"}
REPOSITORY_COMMANDS = {"sync-repos", "full-deploy"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="movex-deploy",
        description="Provision, build and deploy the MoveX platform on a single host.",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to the KEY=VALUE environment file (default: $MOVEX_ENV_FILE, then ./.env).",
    )
    parser.add_argument(
        "--project-root",
        type=str,
        default=None,
        help="Deployment project directory holding config/, docker/ and nginx/ (default: cwd).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup", help="Install host dependencies and create directories")
    setup_parser.add_argument(
        "--allow-non-root", action="store_true",
        help="Run even when not root (installs will likely fail)"
    )

    sync_parser = subparsers.add_parser("sync-repos", help="Clone or update every MoveX repository")
    sync_parser.add_argument(
        "--push-env", action="store_true",
        help="Commit and push changed .env files back to each repository"
    )

    build_parser_ = subparsers.add_parser("build-services", help="Publish, migrate and build backend services")
    build_parser_.add_argument("--from", dest="resume_from", metavar="STEP", help="Resume from the named step")
    build_parser_.add_argument(
        "--list-steps", action="store_true",
        help="Print the ordered steps and exit"
    )

    subparsers.add_parser("build-frontend", help="Install, build and publish the frontend applications")

    deploy_parser = subparsers.add_parser("full-deploy", help="Run the complete deployment")
    deploy_parser.add_argument("--from", dest="resume_from", metavar="STEP", help="Resume from the named step")

    subparsers.add_parser("health-check", help="Check every layer; exit code is the number of issues")

    firewall_parser = subparsers.add_parser("configure-firewall", help="Reset and apply the ufw rule set")
    firewall_parser.add_argument(
        "--verify-ssh", action="store_true",
        help="Confirm the SSH port still answers after activation"
    )

    subparsers.add_parser("process-configs", help="Render config/templates into config/generated")

    logs_parser = subparsers.add_parser("logs", help="View run records and action logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all run records"
    )
    logs_parser.add_argument("--latest", action="store_true", help="Show the latest run record")
    logs_parser.add_argument("--file", "-f", type=str, help="Show a specific run record")
    logs_parser.add_argument(
        "--action", "-a", type=str,
        help="Print the tail of an action log, e.g. movex-be-system-build"
    )
    logs_parser.add_argument("--lines", "-n", type=int, default=50, help="Lines of action log to print")

    return parser


def _load_settings(args: argparse.Namespace) -> DeploySettings:
    required = REPOSITORY_KEYS if args.command in REPOSITORY_COMMANDS else ()
    project_root = Path(args.project_root) if args.project_root else None
    return load_settings(
        args.env_file,
        required,
        project_root=project_root,
        optional=args.command in OPTIONAL_CONFIG_COMMANDS,
    )


def handle_logs_command(args: argparse.Namespace, log_dir: Path) -> int:
    """Handle the logs subcommand."""
    if args.action:
        log_file = log_dir / f"{args.action}.log"
        if not log_file.is_file():
            print(f"❌ Action log not found: {log_file}")
            return 1
        for line in read_tail(log_file, args.lines):
            print(line)
        return 0

    if not log_dir.exists():
        print(f"📁 No logs found in {log_dir}. Run a deployment first.")
        return 0

    records = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not records:
        print("📁 No run records found.")
        return 0

    if args.list_logs:
        print(f"📁 Run records in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Operation':<18} {'Time':<20} {'File'}")
        print("-" * 90)
        for i, record in enumerate(records, 1):
            try:
                with open(record, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError):
                print(f"{i:<4} ❓ {'error':<10} {'?':<18} {'?':<20} {record.name}")
                continue
            status = data.get("status", "unknown")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            status_emoji = {"success": "✅", "failed": "❌"}.get(status, "❓")
            print(f"{i:<4} {status_emoji} {status:<10} {data.get('pipeline', '?'):<18} {start_time:<20} {record.name}")
        return 0

    target_file = records[0]
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1

    show_run_record(target_file)
    return 0


def show_run_record(record: Path) -> None:
    """Display a pipeline run record."""
    with open(record, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    status_emoji = {"success": "✅", "failed": "❌"}.get(status, "❓")
    steps = data.get("steps", [])

    print(f"\n{'='*60}")
    print(f"📄 Run Record: {record.name}")
    print(f"{'='*60}")
    print(f"🔧 Operation:  {data.get('pipeline', 'N/A')}")
    print(f"⏰ Started:    {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:      {data.get('end_time', 'N/A')}")
    print(f"{status_emoji} Status:     {status}")
    print(f"📊 Steps:      {len(steps)}")
    print(f"{'='*60}\n")

    icons = {"success": "✓", "failed": "✗", "skipped": "⚠"}
    for step in steps:
        step_status = step.get("status", "?")
        print(f"{icons.get(step_status, '•')} {step.get('step_name', '?')} [{step_status}]")
        if step.get("error"):
            print(f"    📝 {step['error']}")
        if step.get("log_file"):
            print(f"    📄 {step['log_file']}")

    if data.get("failed_step"):
        print(f"\n❌ Failed at: {data['failed_step']}")
    print()


def dispatch_command(args: argparse.Namespace) -> int:
    settings = _load_settings(args)

    if args.command == "logs":
        return handle_logs_command(args, settings.log_dir)

    workflow = DeploymentWorkflow(settings)

    if args.command == "setup":
        workflow.setup(allow_non_root=args.allow_non_root)
        return 0
    if args.command == "sync-repos":
        report = workflow.sync_repos(push_env=args.push_env)
        return 0 if report.failed == 0 else 1
    if args.command == "build-services":
        if args.list_steps:
            for line in StepPipeline.describe(workflow.backend_steps()):
                print(line)
            return 0
        return 0 if workflow.build_services(resume_from=args.resume_from).ok else 1
    if args.command == "build-frontend":
        return 0 if workflow.build_frontend().ok else 1
    if args.command == "full-deploy":
        return 0 if workflow.full_deploy(resume_from=args.resume_from).ok else 1
    if args.command == "health-check":
        return workflow.health_check().exit_code
    if args.command == "configure-firewall":
        workflow.configure_firewall(verify_ssh=args.verify_ssh)
        return 0
    if args.command == "process-configs":
        workflow.process_configs()
        return 0

    raise ValueError(f"Unsupported command {args.command}")


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        return dispatch_command(args)
    except UnknownStep as exc:
        logger.error("%s", exc)
        return 2
    except DeployError as exc:
        logger.error("%s", exc)
        return 1
