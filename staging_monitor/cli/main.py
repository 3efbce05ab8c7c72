"""
staging-monitor CLI
===================
    staging-monitor run [--event PATH]   process one workflow_run payload
                                         (default: $GITHUB_EVENT_PATH)
    staging-monitor check                print the stored report's status
    staging-monitor serve                start the webhook server

Exit codes (run):
    0  published, unchanged, stale, skipped, ignored or degraded
    1  fatal publish failure, or unreadable event payload
    2  the upstream run is not complete
Exit codes (check):
    0  fresh report
    1  anything else
"""
import argparse
import asyncio
import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn

from staging_monitor.agents.report_publisher import ReportPublisher
from staging_monitor.agents.trigger_controller import ignore_reason
from staging_monitor.core.config import HTTP_TIMEOUT, REPORT_MAX_AGE_HOURS
from staging_monitor.core.errors import PublishConflict, PublishError
from staging_monitor.models.run_event import RunCompletionEvent
from staging_monitor.services.pipeline import build_controller, build_store
from staging_monitor.services.report_status import assess, describe
from staging_monitor.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_COMPLETE = 2


def load_event(path: str) -> RunCompletionEvent:
    if not path:
        raise ValueError("no event payload: pass --event or set GITHUB_EVENT_PATH")
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    return RunCompletionEvent.from_workflow_run_payload(payload)


def cmd_run(args) -> int:
    try:
        event = load_event(args.event)
    except (OSError, ValueError) as e:
        logger.error("Cannot read event payload: %s", e)
        return EXIT_FAILED

    reason = ignore_reason(event)
    if reason:
        logger.info("Ignoring run %d: %s", event.run_id, reason)
        return EXIT_OK

    controller = build_controller()
    try:
        outcome = asyncio.run(controller.handle(event))
    except (PublishConflict, PublishError) as e:
        logger.error("Publishing failed for run %d: %s", event.run_id, e)
        logger.error("State trace: %s", " → ".join(controller.last_states))
        return EXIT_FAILED

    logger.info("Run %d: %s (%s)", event.run_id, outcome.status, " → ".join(outcome.states))
    if outcome.status == "aborted":
        return EXIT_NOT_COMPLETE
    return EXIT_OK


def cmd_check(args) -> int:
    store = build_store()
    try:
        stored = asyncio.run(_read_with_timeout(store))
    except PublishError as e:
        print(f"❌ Could not read {store.destination}: {e}")
        return EXIT_FAILED

    status = assess(
        stored,
        now=datetime.now(timezone.utc),
        max_age_hours=args.max_age_hours,
        destination=store.destination,
    )
    print(describe(status))
    return EXIT_OK if status.healthy else EXIT_FAILED


async def _read_with_timeout(store):
    return await ReportPublisher(store).read_current(deadline=time.monotonic() + HTTP_TIMEOUT)


def cmd_serve(args) -> int:
    uvicorn.run("main:app", host=args.host, port=args.port)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staging-monitor",
        description="Publish the status of the staging workflow as a markdown report",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    parser.add_argument("--no-log-file", action="store_true", help="log to the console only")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="process one workflow_run event")
    run_parser.add_argument(
        "--event",
        default=os.getenv("GITHUB_EVENT_PATH", ""),
        help="path to the workflow_run payload (default: $GITHUB_EVENT_PATH)",
    )
    run_parser.set_defaults(func=cmd_run)

    check_parser = subparsers.add_parser("check", help="print the stored report's status")
    check_parser.add_argument(
        "--max-age-hours",
        type=float,
        default=REPORT_MAX_AGE_HOURS,
        help="age after which the report counts as stale",
    )
    check_parser.set_defaults(func=cmd_check)

    serve_parser = subparsers.add_parser("serve", help="start the webhook server")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_to_file=not args.no_log_file,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
