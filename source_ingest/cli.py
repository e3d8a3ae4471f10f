"""CLI entry point: manager sin HTTP (run) o API de control (serve)."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

import uvicorn

from common.config import get_settings
from common.db import check_connection, create_db_engine

from .main import build_manager

logger = logging.getLogger(__name__)


def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = create_db_engine(args.database_url or settings.database_url)
    if not check_connection(engine):
        logger.error("Database not reachable, aborting")
        return 1

    manager = build_manager(engine)
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Signal %s received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("Source manager started (headless)")
    while not stop.is_set():
        try:
            manager.initialize()
        except Exception as e:
            logger.error("Initialization failed, retrying in %.1fs: %s", args.retry_seconds, e)
            stop.wait(args.retry_seconds)
            continue
        break

    # Status periódico mientras corre
    while not stop.wait(args.status_seconds):
        summary = manager.get_summary()
        logger.info(
            "Sources: total=%d running=%d reconnecting=%d records=%d",
            summary["total"], summary["running"], summary["reconnecting"], summary["recordsProcessed"],
        )

    report = manager.shutdown()
    logger.info("Stopped %d source(s), %d failed", len(report.stopped), len(report.failed))
    return 0 if not report.failed else 2


def _serve(args: argparse.Namespace) -> int:
    settings = get_settings()
    uvicorn.run(
        "source_ingest.main:create_app",
        factory=True,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Historian data source ingestion service")
    sub = p.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="start all active sources without the HTTP API")
    run_p.add_argument("--database-url", default=None, help="overrides DATABASE_URL")
    run_p.add_argument("--status-seconds", type=float, default=60.0)
    run_p.add_argument("--retry-seconds", type=float, default=10.0)
    run_p.set_defaults(func=_run)

    serve_p = sub.add_parser("serve", help="serve the HTTP control API")
    serve_p.add_argument("--host", default=None)
    serve_p.add_argument("--port", type=int, default=None)
    serve_p.set_defaults(func=_serve)

    args = p.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
