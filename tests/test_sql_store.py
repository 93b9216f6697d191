"""Tests for the SQL job store on in-memory SQLite."""

import pytest

from jobtrack.errors import JobNotClaimable, JobRecordNotFound
from jobtrack.records import JobRecord, JobStatus
from jobtrack.stages import Stage
from jobtrack.storage.sql import SQLJobStore
from jobtrack.tracker import LiveProgressTracker
from jobtrack.progress import OverallStatus

from tests.conftest import settle


@pytest.fixture
def sql_store():
    store = SQLJobStore("sqlite://")
    yield store
    store.close()


class TestSQLJobStore:
    """Test the processing_jobs table operations."""

    @pytest.mark.asyncio
    async def test_fetch_unknown_document(self, sql_store):
        with pytest.raises(JobRecordNotFound):
            await sql_store.fetch_all("missing")

    @pytest.mark.asyncio
    async def test_job_lifecycle_roundtrip(self, sql_store):
        job = await sql_store.enqueue("doc-1", Stage.OCR, input_data={"pages": [{"n": 1}]})
        assert job.status is JobStatus.QUEUED
        assert job.version == 1

        running = await sql_store.claim(job.job_id)
        assert running.status is JobStatus.RUNNING
        assert running.started_at is not None
        assert running.version == 2

        done = await sql_store.complete(job.job_id, {"annotations": 2})
        assert done.status is JobStatus.DONE
        assert done.output_data == {"annotations": 2}
        assert done.version == 3

        [fetched] = await sql_store.fetch_all("doc-1")
        assert fetched.job_id == job.job_id
        assert fetched.stage is Stage.OCR
        assert fetched.input_data == {"pages": [{"n": 1}]}
        assert fetched.status is JobStatus.DONE

    @pytest.mark.asyncio
    async def test_claim_requires_queued(self, sql_store):
        job = await sql_store.enqueue("doc-1", Stage.INGEST)
        await sql_store.claim(job.job_id)
        with pytest.raises(JobNotClaimable):
            await sql_store.claim(job.job_id)
        with pytest.raises(JobRecordNotFound):
            await sql_store.claim("nope")

    @pytest.mark.asyncio
    async def test_fail(self, sql_store):
        job = await sql_store.enqueue("doc-1", Stage.EMBED)
        failed = await sql_store.fail(job.job_id, "timeout")
        assert failed.status is JobStatus.ERROR
        assert failed.error_message == "timeout"
        with pytest.raises(JobRecordNotFound):
            await sql_store.fail("nope", "x")

    @pytest.mark.asyncio
    async def test_list_queued(self, sql_store):
        first = await sql_store.enqueue("doc-1", Stage.OCR)
        await sql_store.enqueue("doc-1", Stage.EMBED)
        second = await sql_store.enqueue("doc-2", Stage.OCR)
        queued = await sql_store.list_queued(Stage.OCR)
        assert [job.job_id for job in queued] == [first.job_id, second.job_id]
        by_name = await sql_store.list_queued("ocr")
        assert [job.job_id for job in by_name] == [first.job_id, second.job_id]

    @pytest.mark.asyncio
    async def test_writes_are_published(self, sql_store):
        seen: list[JobRecord] = []
        await sql_store.subscribe("doc-1", seen.append)
        job = await sql_store.enqueue("doc-1", Stage.INGEST)
        await sql_store.claim(job.job_id)
        await settle()
        assert [r.status for r in seen] == [JobStatus.QUEUED, JobStatus.RUNNING]

    @pytest.mark.asyncio
    async def test_tracker_over_sql_store(self, sql_store):
        ingest = await sql_store.enqueue("doc-1", Stage.INGEST)
        await sql_store.claim(ingest.job_id)
        tracker = await LiveProgressTracker.open(sql_store, "doc-1")
        assert tracker.view.overall_status is OverallStatus.IN_PROGRESS

        await sql_store.complete(ingest.job_id)
        view = await tracker.wait_for(lambda v: v.completed_stages == 1, timeout=2)
        assert view.ingest.status is JobStatus.DONE
        tracker.dispose()
