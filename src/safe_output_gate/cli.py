"""Command-line entrypoint for the safe-output gate."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import timedelta

from safe_output_gate.config import Settings, load_settings
from safe_output_gate.execution.github_client import GitHubClient
from safe_output_gate.gatekeeper.rate_limit import (
    DEFAULT_MAX_RUNS,
    check_rate_limit,
    workflow_runs_fetcher,
)
from safe_output_gate.logging_utils import configure_logging, get_logger
from safe_output_gate.pipeline import run_from_settings
from safe_output_gate.utils.serialization import json_default

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REJECTED_BATCH = 2


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    paths: dict[str, object] = {}
    if args.records:
        paths["records_path"] = args.records
    if args.config:
        paths["config_path"] = args.config
    if args.output_dir:
        paths["output_dir"] = args.output_dir
    workflow: dict[str, object] = {}
    if args.staged:
        workflow["staged"] = True
    if args.repository:
        workflow["repository"] = args.repository
    return settings.model_copy(
        update={
            "paths": settings.paths.model_copy(update=paths),
            "workflow": settings.workflow.model_copy(update=workflow),
        }
    )


def _run(args: argparse.Namespace) -> int:
    settings = _apply_overrides(load_settings(), args)
    summary = asyncio.run(run_from_settings(settings))
    if args.print_summary:
        json.dump(summary.to_dict(), sys.stdout, indent=2, default=json_default)
        sys.stdout.write("\n")
    if any(error.code.value == "CONFIGURATION_INTEGRITY" for error in summary.errors):
        return EXIT_REJECTED_BATCH
    return EXIT_FAILED if summary.has_failures else EXIT_OK


async def _check_rate_limit(args: argparse.Namespace) -> int:
    settings = load_settings()
    workflow = settings.workflow
    repository = args.repository or workflow.repository
    if not repository or not args.workflow or not args.actor:
        raise SystemExit("check-rate-limit needs --repository, --workflow and --actor")
    async with GitHubClient(
        workflow.token,
        api_url=workflow.api_url,
        timeout=settings.execution.http_timeout_seconds,
    ) as client:
        decision = await check_rate_limit(
            args.actor,
            workflow_runs_fetcher(client, repository, args.workflow, args.actor),
            max_runs=args.max_runs,
            window=timedelta(minutes=args.window_minutes),
            current_run_id=int(workflow.run_id) if workflow.run_id and workflow.run_id.isdigit() else None,
            event_name=args.event_name,
            events=args.events.split(",") if args.events else None,
        )
    json.dump(decision.to_dict(), sys.stdout)
    sys.stdout.write("\n")
    return EXIT_OK if decision.allowed else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="safe-output-gate",
        description="Validate, sanitize, authorize and execute agent-proposed operations",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Process a batch of safe-output records")
    run.add_argument("--records", help="Path to the JSONL record stream")
    run.add_argument("--config", help="Path to the safe-output configuration (YAML or JSON)")
    run.add_argument("--output-dir", help="Directory for summary and temporary-id artifacts")
    run.add_argument("--repository", help="owner/repo the workflow runs in")
    run.add_argument("--staged", action="store_true", help="Preview only; make no API calls")
    run.add_argument("--print-summary", action="store_true", help="Write the summary JSON to stdout")

    limit = sub.add_parser("check-rate-limit", help="Per-actor trigger rate limit")
    limit.add_argument("--actor", default=os.getenv("GITHUB_ACTOR"))
    limit.add_argument("--workflow", help="Workflow file name or id")
    limit.add_argument("--repository")
    limit.add_argument("--event-name", default=os.getenv("GITHUB_EVENT_NAME"))
    limit.add_argument("--events", default=os.getenv("GH_AW_RATE_LIMIT_EVENTS"))
    limit.add_argument(
        "--max-runs", type=int, default=int(os.getenv("GH_AW_RATE_LIMIT_MAX") or DEFAULT_MAX_RUNS)
    )
    limit.add_argument(
        "--window-minutes", type=int, default=int(os.getenv("GH_AW_RATE_LIMIT_WINDOW") or 60)
    )
    return parser


_COMMANDS = ("run", "check-rate-limit")


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0] not in _COMMANDS and argv[0] not in ("-h", "--help")):
        argv = ["run", *argv]
    args = build_parser().parse_args(argv)

    configure_logging()
    logger = get_logger(__name__)
    try:
        if args.command == "check-rate-limit":
            return asyncio.run(_check_rate_limit(args))
        return _run(args)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
