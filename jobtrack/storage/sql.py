"""
SQL implementation of the job store interfaces (SQLite or PostgreSQL).

Queries run in a worker thread through ``asyncio.to_thread`` so the event
loop is never blocked. Every committed write is published on the store's
``ChangeFeed`` the way the database's realtime channel would announce it.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from jobtrack.errors import JobNotClaimable, JobRecordNotFound, StoreTransportError
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
from jobtrack.storage.models import ProcessingJob

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def make_engine(db_url: str):
    """
    Create an engine for ``db_url``. In-memory SQLite shares one connection
    across threads.
    """
    if db_url.startswith("sqlite://"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(db_url, **kwargs)
    return create_engine(db_url)


class SQLJobStore(JobRecordStoreInterface, JobQueueInterface):
    """
    Job store backed by the ``processing_jobs`` table.
    """

    def __init__(self, db_url: str = "sqlite://", feed: ChangeFeed | None = None, engine=None):
        self.engine = engine if engine is not None else make_engine(db_url)
        self.feed = feed or ChangeFeed()
        SQLModel.metadata.create_all(self.engine)

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with Session(self.engine) as session:
                return fn(session)

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as exc:
            logger.error("processing_jobs query failed: %s", exc)
            raise StoreTransportError(str(exc)) from exc

    async def fetch_all(self, document_id: str) -> list[JobRecord]:
        def query(session: Session) -> list[JobRecord]:
            rows = session.exec(
                select(ProcessingJob).where(ProcessingJob.document_id == document_id).order_by(ProcessingJob.created_at)
            ).all()
            return [row.to_record() for row in rows]

        records = await self._run(query)
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

    async def enqueue(self, document_id: str, stage: Stage, input_data: Any = None) -> JobRecord:
        def insert(session: Session) -> JobRecord:
            job = ProcessingJob(
                id=str(uuid.uuid4()),
                document_id=document_id,
                stage=Stage(stage).value,
                status=JobStatus.QUEUED.value,
                created_at=_now(),
                input_data=input_data,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return job.to_record()

        return self._publish(await self._run(insert))

    async def claim(self, job_id: str) -> JobRecord:
        def conditional_update(session: Session) -> JobRecord:
            result = session.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .where(ProcessingJob.status == JobStatus.QUEUED.value)
                .values(
                    status=JobStatus.RUNNING.value,
                    started_at=_now(),
                    version=ProcessingJob.version + 1,
                )
            )
            session.commit()
            job = session.get(ProcessingJob, job_id)
            if job is None:
                raise JobRecordNotFound(f"No job with id {job_id}")
            if result.rowcount == 0:
                raise JobNotClaimable(f"Job {job_id} is {job.status}, not queued")
            return job.to_record()

        return self._publish(await self._run(conditional_update))

    async def complete(self, job_id: str, output_data: Any = None) -> JobRecord:
        return await self._finish(
            job_id,
            status=JobStatus.DONE.value,
            output_data=output_data,
        )

    async def fail(self, job_id: str, message: str) -> JobRecord:
        return await self._finish(
            job_id,
            status=JobStatus.ERROR.value,
            error_message=message,
        )

    async def list_queued(self, stage: Stage, limit: int = 5) -> list[JobRecord]:
        def query(session: Session) -> list[JobRecord]:
            rows = session.exec(
                select(ProcessingJob)
                .where(ProcessingJob.stage == Stage(stage).value)
                .where(ProcessingJob.status == JobStatus.QUEUED.value)
                .order_by(ProcessingJob.created_at)
                .limit(limit)
            ).all()
            return [row.to_record() for row in rows]

        return await self._run(query)

    async def get(self, job_id: str) -> JobRecord | None:
        def query(session: Session) -> JobRecord | None:
            job = session.get(ProcessingJob, job_id)
            return job.to_record() if job is not None else None

        return await self._run(query)

    def close(self) -> None:
        self.engine.dispose()

    async def _finish(self, job_id: str, **values: Any) -> JobRecord:
        def write(session: Session) -> JobRecord:
            job = session.get(ProcessingJob, job_id)
            if job is None:
                raise JobRecordNotFound(f"No job with id {job_id}")
            for key, value in values.items():
                setattr(job, key, value)
            job.completed_at = _now()
            job.version += 1
            session.add(job)
            session.commit()
            session.refresh(job)
            return job.to_record()

        return self._publish(await self._run(write))

    def _publish(self, record: JobRecord) -> JobRecord:
        self.feed.publish(record)
        return record
