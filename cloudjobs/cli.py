"""
cloudjobs command line.

Commands:
    cloudjobs serve        Run the HTTP API (uvicorn)
    cloudjobs controller   Run the worker controller in the foreground
    cloudjobs worker       Drain a single job and exit
    cloudjobs submit       Submit a job from the command line
    cloudjobs status       Show queue counts, or one job with --job-id
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .infra import get_settings, setup_logging
from .orchestrator.errors import OrchestratorError, UnknownKindError, ValidationError
from .tasks.kinds import JOB_KINDS

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2

logger = logging.getLogger(__name__)


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the API server."""
    import uvicorn

    from .api.main import create_app

    settings = get_settings()
    settings.ensure_directories()
    setup_logging(settings.log_level, settings.log_dir, prefix="api")

    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return EXIT_SUCCESS


def cmd_controller(args: argparse.Namespace) -> int:
    """Run the worker controller until interrupted."""
    from .orchestrator.controller import main as controller_main
    return controller_main()


def cmd_worker(args: argparse.Namespace) -> int:
    """Drain a single job."""
    from .orchestrator.worker import main as worker_main
    return worker_main()


def _load_payload(args: argparse.Namespace) -> dict:
    if args.payload_file:
        with open(args.payload_file, "r", encoding="utf-8") as f:
            return json.load(f)
    return json.loads(args.payload)


def cmd_submit(args: argparse.Namespace) -> int:
    """Submit a job and print its ID."""
    from .orchestrator.service import JobOrchestrator

    try:
        payload = _load_payload(args)
    except (OSError, ValueError) as e:
        print(f"Error: invalid payload: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    settings = get_settings()
    settings.ensure_directories()
    setup_logging(settings.log_level, log_dir=None)

    orchestrator = JobOrchestrator.create(settings)
    try:
        job = orchestrator.submit(args.type, payload)
    except UnknownKindError as e:
        print(f"Error: {e}. Known kinds: {', '.join(sorted(JOB_KINDS))}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        for detail in e.details:
            print(f"  {'.'.join(detail['loc'])}: {detail['msg']}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except OrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(json.dumps({"job_id": job.job_id, "type": job.type, "dedup_key": job.dedup_key}))
    return EXIT_SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    """Print queue status or one job as JSON."""
    from .orchestrator.service import JobOrchestrator

    settings = get_settings()
    settings.ensure_directories()
    setup_logging(settings.log_level, log_dir=None)

    orchestrator = JobOrchestrator.create(settings)
    try:
        if args.job_id:
            job = orchestrator.get_job(args.job_id)
            if job is None:
                print(f"Error: job not found: {args.job_id}", file=sys.stderr)
                return EXIT_FAILURE
            output = job.to_dict()
        else:
            output = orchestrator.queue_status()
            output["health"] = orchestrator.health()
    except OrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(json.dumps(output, indent=2, ensure_ascii=False))
    return EXIT_SUCCESS


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="cloudjobs",
        description="Asynchronous job orchestration for long-running automation tasks",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    subparsers.add_parser("controller", help="Run the worker controller")
    subparsers.add_parser("worker", help="Drain a single job and exit")

    submit_parser = subparsers.add_parser("submit", help="Submit a job")
    submit_parser.add_argument("type", help=f"Job kind ({', '.join(sorted(JOB_KINDS))})")
    payload_group = submit_parser.add_mutually_exclusive_group(required=True)
    payload_group.add_argument("--payload", help="Payload as a JSON object")
    payload_group.add_argument("--payload-file", help="Path to a JSON payload file")

    status_parser = subparsers.add_parser("status", help="Show queue status or a job")
    status_parser.add_argument("--job-id", help="Show this job instead of queue counts")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "controller":
        return cmd_controller(args)
    elif args.command == "worker":
        return cmd_worker(args)
    elif args.command == "submit":
        return cmd_submit(args)
    elif args.command == "status":
        return cmd_status(args)
    else:
        parser.print_help()
        return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
