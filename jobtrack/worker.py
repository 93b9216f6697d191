"""
Background worker that drives one pipeline stage through its queue.

Each poll takes the oldest queued jobs for the stage, claims them
(queued → running), runs the stage handler, and records the outcome. A
successful job enqueues the next stage with the handler's output as that
job's input, so ingest → ocr → embed chain through the store alone.
"""

import asyncio
from typing import Any, Awaitable, Callable

from jobtrack.errors import JobNotClaimable, JobRecordNotFound
from jobtrack.logging import get_logger
from jobtrack.records import JobRecord
from jobtrack.stages import Stage, next_stage
from jobtrack.storage.interfaces import JobQueueInterface

logger = get_logger(__name__)

StageHandler = Callable[[JobRecord], Awaitable[Any]]


class StageWorker:
    """Polls the queue for one stage and processes its jobs."""

    def __init__(
        self,
        queue: JobQueueInterface,
        stage: Stage,
        handler: StageHandler,
        poll_interval: float = 2.0,
        batch_size: int = 5,
        max_consecutive_errors: int = 5,
    ):
        self.queue = queue
        self.stage = Stage(stage)
        self.handler = handler
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_consecutive_errors = max_consecutive_errors
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """Process one batch of queued jobs. Returns how many jobs were run."""
        processed = 0
        for job in await self.queue.list_queued(self.stage, limit=self.batch_size):
            if await self.process(job):
                processed += 1
        return processed

    async def process(self, job: JobRecord) -> bool:
        """Claim and run a single job. Returns False if another worker had it."""
        try:
            claimed = await self.queue.claim(job.job_id)
        except (JobNotClaimable, JobRecordNotFound) as exc:
            logger.info("Skipping job %s: %s", job.job_id, exc)
            return False

        logger.info("Running %s job %s for document %s", self.stage.value, claimed.job_id, claimed.document_id)
        logger.debug(claimed)
        try:
            output = await self.handler(claimed)
        except Exception as exc:
            logger.exception("%s job %s failed", self.stage.value, claimed.job_id)
            await self.queue.fail(claimed.job_id, str(exc) or type(exc).__name__)
            return True

        try:
            await self.queue.complete(claimed.job_id, output)
        except Exception as exc:
            # leave the job failed rather than running
            await self.queue.fail(claimed.job_id, f"could not record result: {exc}")
            raise
        following = next_stage(self.stage)
        if following is not None:
            await self.queue.enqueue(claimed.document_id, following, input_data=output)
        return True

    async def run(self) -> None:
        """Poll until ``stop`` is called, sleeping while the queue is empty.

        Errors from the store are logged and retried after ``poll_interval``;
        the worker gives up after ``max_consecutive_errors`` failed polls.
        """
        self._stopping.clear()
        consecutive_errors = 0
        logger.info("Starting %s worker", self.stage.value)
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                consecutive_errors += 1
                logger.exception("Error in %s worker loop (%d in a row)", self.stage.value, consecutive_errors)
                if consecutive_errors >= self.max_consecutive_errors:
                    logger.error("Too many consecutive errors, stopping %s worker", self.stage.value)
                    break
                processed = 0
            else:
                consecutive_errors = 0
            if processed:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Stopped %s worker", self.stage.value)

    def stop(self) -> None:
        self._stopping.set()
