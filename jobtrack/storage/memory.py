"""In-memory job store for tests, demos and development.

Keeps job rows in a dict keyed by job id and publishes every write on a
``ChangeFeed``, which stands in for the database's realtime channel.

Not recommended for production: nothing is persisted, and all rows must fit
in memory.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from jobtrack.errors import JobNotClaimable, JobRecordNotFound
from jobtrack.records import JobRecord, JobStatus
from jobtrack.stages import Stage
from jobtrack.storage.feed import ChangeFeed
from jobtrack.storage.interfaces import (
    ChangeCallback,
    ErrorCallback,
    JobQueueInterface,
    JobRecordStoreInterface,
    Subscription,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobStore(JobRecordStoreInterface, JobQueueInterface):
    """Dictionary-backed job store with a realtime change feed.

    Example:
        ```python
        store = InMemoryJobStore()
        job = await store.enqueue("doc-1", Stage.INGEST)
        await store.claim(job.job_id)
        records = await store.fetch_all("doc-1")
        ```
    """

    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or ChangeFeed()
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def fetch_all(self, document_id: str) -> list[JobRecord]:
        records = [job for job in self._jobs.values() if job.document_id == document_id]
        if not records:
            raise JobRecordNotFound(f"No jobs for document {document_id}")
        return records

    async def subscribe(
        self,
        document_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        return self.feed.subscribe(document_id, on_change, on_error)

    async def upsert(self, record: JobRecord) -> JobRecord:
        """Write a record as-is (assigning an id if missing) and publish it.

        This is the raw write path: no lifecycle checks, no version bump
        unless the record has none.
        """
        updates: dict[str, Any] = {}
        if record.job_id is None:
            updates["job_id"] = str(uuid.uuid4())
        if record.created_at is None:
            updates["created_at"] = _now()
        if record.version is None:
            previous = self._jobs.get(record.job_id or "")
            updates["version"] = (previous.version or 0) + 1 if previous else 1
        if updates:
            record = record.model_copy(update=updates)
        self._jobs[record.job_id] = record
        self.feed.publish(record)
        return record

    async def enqueue(self, document_id: str, stage: Stage, input_data: Any = None) -> JobRecord:
        record = JobRecord(
            job_id=str(uuid.uuid4()),
            document_id=document_id,
            stage=stage,
            status=JobStatus.QUEUED,
            input_data=input_data,
            created_at=_now(),
            version=1,
        )
        return await self.upsert(record)

    async def claim(self, job_id: str) -> JobRecord:
        async with self._lock:
            job = self._get(job_id)
            if job.status is not JobStatus.QUEUED:
                raise JobNotClaimable(f"Job {job_id} is {job.raw_status}, not queued")
            return await self._update(job, status=JobStatus.RUNNING, raw_status="running", started_at=_now())

    async def complete(self, job_id: str, output_data: Any = None) -> JobRecord:
        async with self._lock:
            job = self._get(job_id)
            return await self._update(
                job,
                status=JobStatus.DONE,
                raw_status="done",
                completed_at=_now(),
                output_data=output_data,
            )

    async def fail(self, job_id: str, message: str) -> JobRecord:
        async with self._lock:
            job = self._get(job_id)
            return await self._update(
                job,
                status=JobStatus.ERROR,
                raw_status="error",
                completed_at=_now(),
                error_message=message,
            )

    async def list_queued(self, stage: Stage, limit: int = 5) -> list[JobRecord]:
        stage = Stage(stage)
        queued = [job for job in self._jobs.values() if job.stage is stage and job.status is JobStatus.QUEUED]
        queued.sort(key=lambda job: job.created_at or datetime.min.replace(tzinfo=timezone.utc))
        return queued[:limit]

    async def get(self, job_id: str) -> JobRecord | None:
        return self._jobs.get(job_id)

    async def count(self) -> int:
        return len(self._jobs)

    def _get(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobRecordNotFound(f"No job with id {job_id}")
        return job

    async def _update(self, job: JobRecord, **changes: Any) -> JobRecord:
        changes["version"] = (job.version or 0) + 1
        return await self.upsert(job.model_copy(update=changes))
