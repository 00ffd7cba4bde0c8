"""CLI to run a refresh, start the scheduler, or serve the HTTP trigger."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from directory.collectors.registry import REGISTRY, UnknownSourceError, validate_sources
from directory.core.config import get_settings
from directory.core.models import RunState
from directory.jobs.queue import RefreshRequest
from directory.jobs.runtime import build_runtime

logger = logging.getLogger(__name__)


def _split(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def run_refresh_job(*, sources: List[str], regions: List[str], full_crawl: bool, timeout: Optional[float]) -> int:
    runtime = build_runtime()
    try:
        job = runtime.queue.enqueue(
            RefreshRequest(sources=sources or None, regions=regions, full_crawl=full_crawl, trigger="cli")
        )
        logger.info("Waiting for run %s", job.run_id)
        runtime.queue.wait(job.run_id, timeout=timeout)
        print(json.dumps(job.to_dict(), indent=2, default=str))
        return 0 if job.state is RunState.COMPLETED else 1
    finally:
        runtime.shutdown()


def run_scheduler() -> int:
    runtime = build_runtime()
    runtime.scheduler.start()
    slot, fire_at = runtime.scheduler.next_fire()
    logger.info("Scheduler running; next refresh %s at %s. Press Ctrl+C to stop.", slot.name, fire_at.isoformat())
    try:
        while runtime.scheduler.running:
            runtime.scheduler.wait(timeout=60)
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping scheduler")
    finally:
        runtime.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Supplier and event directory refresh worker")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run one refresh and wait for it")
    run.add_argument(
        "--sources",
        dest="sources",
        help=f"Comma separated sources ({', '.join(REGISTRY)}); defaults to DEFAULT_SOURCES",
    )
    run.add_argument("--regions", dest="regions", help="Comma separated regions; defaults to DEFAULT_REGIONS")
    run.add_argument("--full-crawl", dest="full_crawl", action="store_true", help="Use every search term and page")
    run.add_argument("--timeout", dest="timeout", type=float, help="Seconds to wait before giving up")

    commands.add_parser("schedule", help="Start the twice-monthly scheduler and block")

    serve = commands.add_parser("serve", help="Start the HTTP trigger server")
    serve.add_argument("--port", dest="port", type=int, default=get_settings().worker_port, help="Port to bind")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        try:
            sources = validate_sources(_split(args.sources))
        except UnknownSourceError as exc:
            parser.error(str(exc))
        return run_refresh_job(
            sources=sources,
            regions=_split(args.regions),
            full_crawl=args.full_crawl,
            timeout=args.timeout,
        )
    if args.command == "schedule":
        return run_scheduler()

    from directory.jobs import server

    runtime = server.get_runtime()
    runtime.scheduler.start()
    try:
        server.app.run(host="0.0.0.0", port=args.port)
    finally:
        runtime.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
