"""Service entry point.

``serve`` runs the HTTP API (enqueue endpoint, worker trigger, health) under
uvicorn. ``run-once`` performs a single worker invocation and prints its
report, for schedulers that run a command instead of calling the endpoint.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import uvicorn

from lecture_transcriber.api.app import NO_PENDING_JOBS_MESSAGE, create_app
from lecture_transcriber.observability.logger import StructuredJsonFormatter
from lecture_transcriber.services import ServiceContainer

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure the root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.handlers = [handler]


async def _run_once(limit: int) -> dict:
    services = await ServiceContainer.from_env()
    try:
        outcomes = await services.worker.run_batch(limit)
    finally:
        await services.aclose()
    if not outcomes:
        return {"processed": 0, "message": NO_PENDING_JOBS_MESSAGE}
    return {
        "processed": len(outcomes),
        "jobs": [outcome.to_dict() for outcome in outcomes],
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lecture-transcriber")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8080")))

    run_once = commands.add_parser("run-once", help="Process one batch of jobs")
    run_once.add_argument("--limit", type=int, default=1)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested command."""
    args = _build_parser().parse_args(argv)
    _setup_logging()

    if args.command == "run-once":
        try:
            report = asyncio.run(_run_once(args.limit))
        except Exception:
            logger.error("Worker invocation failed", exc_info=True)
            return 1
        print(json.dumps(report))
        return 0

    host = getattr(args, "host", "0.0.0.0")
    port = getattr(args, "port", int(os.environ.get("PORT", "8080")))
    logger.info("Lecture transcriber starting on port %d", port)
    uvicorn.run(create_app(), host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
