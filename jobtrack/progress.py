"""Aggregation of job records into a per-document progress view.

``aggregate`` is a pure function: the same records always give the same
``ProgressView``, and it holds no state between calls, so any number of
trackers can share it.

Records are folded in the order given. When two records refer to the same
stage, the later one wins regardless of timestamps; callers are expected to
pass records in arrival order. A store that redelivers an older update after
a newer one will therefore make that stage appear to go backwards.
``LiveProgressTracker`` drops such stale updates before they get here when
the store supplies row versions.
"""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, Field

from jobtrack.records import JobRecord, JobStatus
from jobtrack.stages import Stage, all_stages


class OverallStatus(str, Enum):
    """Summary status of a document across all stages."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class StageView(BaseModel):
    """Progress of a single stage as seen by the client."""

    model_config = {"frozen": True}

    status: JobStatus = JobStatus.QUEUED
    raw_status: str = "queued"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    metadata: Any = None
    job_id: str | None = None

    @classmethod
    def from_record(cls, record: JobRecord) -> "StageView":
        return cls(
            status=record.status,
            raw_status=record.raw_status,
            started_at=record.started_at,
            completed_at=record.completed_at,
            error=record.error_message,
            metadata=record.output_data,
            job_id=record.job_id,
        )

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None or self.completed_at is None:
            return None
        try:
            return self.completed_at - self.started_at
        except TypeError:
            # naive and aware timestamps mixed
            return None


def _default_stages() -> dict[Stage, StageView]:
    return {stage: StageView() for stage in all_stages()}


class ProgressView(BaseModel):
    """Immutable snapshot of a document's processing progress.

    Every field except ``sync_error`` is derived from the job records known
    at the time the view was built. ``sync_error`` is set by the tracker when
    it could not reach the store, and says nothing about the pipeline itself.

    Attributes:
        document_id: Document the view describes.
        stages: Per-stage view for every registered stage, in pipeline order.
        overall_status: Summary across all stages.
        completed_stages: Number of stages whose status is done.
        total_stages: Number of registered stages.
        progress_percentage: ``completed_stages / total_stages`` as a whole percentage.
        error: Message of the most recently reported failing stage.
        sync_error: Transport problem seen while syncing with the store.
    """

    model_config = {"frozen": True}

    document_id: str | None = None
    stages: dict[Stage, StageView] = Field(default_factory=_default_stages)
    overall_status: OverallStatus = OverallStatus.NOT_STARTED
    completed_stages: int = Field(default=0, ge=0)
    total_stages: int = Field(default_factory=lambda: len(all_stages()), ge=1)
    progress_percentage: int = Field(default=0, ge=0, le=100)
    error: str | None = None
    sync_error: str | None = None

    def stage(self, stage: Stage | str) -> StageView:
        return self.stages[Stage(stage)]

    @property
    def ingest(self) -> StageView:
        return self.stages[Stage.INGEST]

    @property
    def ocr(self) -> StageView:
        return self.stages[Stage.OCR]

    @property
    def embed(self) -> StageView:
        return self.stages[Stage.EMBED]

    @property
    def is_finished(self) -> bool:
        """True once the pipeline completed or failed."""
        return self.overall_status in (OverallStatus.COMPLETED, OverallStatus.ERROR)


def _percentage(completed: int, total: int) -> int:
    # half-up, not banker's rounding
    return int(math.floor(completed / total * 100 + 0.5))


def aggregate(records: Iterable[JobRecord], document_id: str | None = None) -> ProgressView:
    """Fold job records into a ``ProgressView``.

    Records for stages outside the registry are skipped. For each stage the
    last record in ``records`` decides its view. Any stage in error makes the
    whole document an error, even if the other stages are done; ``error`` is
    taken from the failing stage whose deciding record came last.

    Args:
        records: Job records for a single document, in arrival order.
        document_id: Stamped onto the view; records are not filtered by it.

    Returns:
        The aggregated view. An empty input gives a not-started view at 0%.
    """
    stages = _default_stages()
    # position of the record that decided each stage
    decided_at: dict[Stage, int] = {}

    for position, record in enumerate(records):
        if record.stage is None:
            continue
        stages[record.stage] = StageView.from_record(record)
        decided_at[record.stage] = position

    total = len(stages)
    completed = sum(1 for view in stages.values() if view.status is JobStatus.DONE)

    failed = [stage for stage, view in stages.items() if view.status is JobStatus.ERROR]
    error: str | None = None
    if failed:
        latest = max(failed, key=lambda stage: decided_at[stage])
        error = stages[latest].error

    if failed:
        overall = OverallStatus.ERROR
    elif completed == total:
        overall = OverallStatus.COMPLETED
    elif completed > 0 or any(view.status is JobStatus.RUNNING for view in stages.values()):
        overall = OverallStatus.IN_PROGRESS
    else:
        overall = OverallStatus.NOT_STARTED

    return ProgressView(
        document_id=document_id,
        stages=stages,
        overall_status=overall,
        completed_stages=completed,
        total_stages=total,
        progress_percentage=_percentage(completed, total),
        error=error,
    )
