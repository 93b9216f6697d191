#!/usr/bin/env python3
"""Command-line entry point for watching document processing progress.

Usage:
  jobtrack watch DOCUMENT_ID [--store-url URL] [--timeout SECONDS]
  jobtrack demo [--document-id ID] [--step-delay SECONDS] [--fail-stage STAGE]

``watch`` prints a summary every time the document's progress changes and
exits once it completes (0), fails (1) or the timeout passes (2). ``demo``
runs the three pipeline stages with stub handlers against an in-memory store
and watches the result.
"""

import argparse
import asyncio
import logging
import sys
import uuid
from typing import Sequence

from jobtrack.config import JobtrackConfig, create_store, load_config
from jobtrack.describe import summary_lines
from jobtrack.logging import setup_logging
from jobtrack.progress import OverallStatus, ProgressView
from jobtrack.records import JobRecord
from jobtrack.stages import Stage, all_stages
from jobtrack.storage.interfaces import JobRecordStoreInterface
from jobtrack.storage.memory import InMemoryJobStore
from jobtrack.tracker import track
from jobtrack.worker import StageWorker

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_TIMEOUT = 2


def _print_view(view: ProgressView) -> None:
    print("\n".join(summary_lines(view)), flush=True)


def _exit_code(view: ProgressView) -> int:
    return EXIT_COMPLETED if view.overall_status is OverallStatus.COMPLETED else EXIT_FAILED


async def watch(store: JobRecordStoreInterface, document_id: str, timeout: float | None) -> int:
    """Print progress for ``document_id`` until it finishes. Returns the exit code."""
    async with track(store, document_id, listener=_print_view) as tracker:
        try:
            view = await tracker.wait_for(lambda v: v.is_finished, timeout=timeout)
        except (asyncio.TimeoutError, TimeoutError):
            print(f"Timed out after {timeout}s waiting for {document_id}", file=sys.stderr)
            return EXIT_TIMEOUT
    return _exit_code(view)


async def run_demo(
    document_id: str,
    step_delay: float,
    fail_stage: Stage | None,
    config: JobtrackConfig,
    timeout: float | None = None,
) -> int:
    """Run a full in-memory pipeline for one document while watching it."""
    store = InMemoryJobStore()

    def make_handler(stage: Stage):
        async def handler(job: JobRecord):
            await asyncio.sleep(step_delay)
            if stage is fail_stage:
                raise RuntimeError(f"simulated {stage.value} failure")
            return {"stage": stage.value, "source_stage": job.raw_stage, "input": job.input_data}

        return handler

    workers = [
        StageWorker(
            store,
            stage,
            make_handler(stage),
            poll_interval=min(config.worker.poll_interval, max(step_delay, 0.05)),
            batch_size=config.worker.batch_size,
        )
        for stage in all_stages()
    ]
    tasks = [asyncio.create_task(worker.run()) for worker in workers]
    try:
        await store.enqueue(document_id, Stage.INGEST, input_data={"filename": f"{document_id}.pdf"})
        return await watch(store, document_id, timeout)
    finally:
        for worker in workers:
            worker.stop()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobtrack", description="Watch document processing progress.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    watch_parser = sub.add_parser("watch", help="Watch a document until its processing finishes")
    watch_parser.add_argument("document_id", help="Document to watch")
    watch_parser.add_argument("--store-url", default=None, help="Store URL (default: from config)")
    watch_parser.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")

    demo_parser = sub.add_parser("demo", help="Run a simulated pipeline against an in-memory store")
    demo_parser.add_argument("--document-id", default=None, help="Document id (default: random UUID)")
    demo_parser.add_argument("--step-delay", type=float, default=0.5, help="Seconds each stub stage takes")
    demo_parser.add_argument(
        "--fail-stage",
        choices=[stage.value for stage in all_stages()],
        default=None,
        help="Make this stage fail",
    )
    demo_parser.add_argument("--timeout", type=float, default=60.0, help="Give up after this many seconds")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    setup_logging(args.log_level or config.log_level)

    if args.command == "watch":
        if args.store_url:
            config = config.model_copy(update={"store_url": args.store_url})
        store = create_store(config)
        return asyncio.run(watch(store, args.document_id, args.timeout))

    fail_stage = Stage(args.fail_stage) if args.fail_stage else None
    document_id = args.document_id or str(uuid.uuid4())
    return asyncio.run(run_demo(document_id, args.step_delay, fail_stage, config, args.timeout))


if __name__ == "__main__":
    logging.captureWarnings(True)
    sys.exit(main())
