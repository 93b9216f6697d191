"""
jobtrack - live progress tracking for a staged document processing pipeline.

Documents go through three background stages (ingest → OCR → embed), each
recorded as a job row in a backing store. This package keeps a client-side
progress view in sync with those rows via an initial fetch plus realtime
change events, and renders the view as human-readable status text.

The SQL store pulls in SQLAlchemy/SQLModel and is imported lazily:

    # This does NOT import sqlmodel:
    from jobtrack import LiveProgressTracker, InMemoryJobStore

    # This DOES import sqlmodel (when the symbol is accessed):
    from jobtrack import SQLJobStore
"""

from typing import TYPE_CHECKING

from jobtrack.describe import describe, format_duration, stage_label, status_badge, summary_lines
from jobtrack.errors import JobNotClaimable, JobRecordNotFound, JobTrackError, StoreTransportError
from jobtrack.progress import OverallStatus, ProgressView, StageView, aggregate
from jobtrack.records import JobRecord, JobStatus
from jobtrack.stages import Stage, all_stages, is_known_stage, next_stage
from jobtrack.storage import (
    ChangeFeed,
    InMemoryJobStore,
    JobQueueInterface,
    JobRecordStoreInterface,
    Subscription,
)
from jobtrack.tracker import LiveProgressTracker, TrackerState, track

if TYPE_CHECKING:
    from jobtrack.storage.sql import SQLJobStore

__all__ = [
    "ChangeFeed",
    "InMemoryJobStore",
    "JobNotClaimable",
    "JobQueueInterface",
    "JobRecord",
    "JobRecordNotFound",
    "JobRecordStoreInterface",
    "JobStatus",
    "JobTrackError",
    "LiveProgressTracker",
    "OverallStatus",
    "ProgressView",
    "SQLJobStore",
    "Stage",
    "StageView",
    "StoreTransportError",
    "Subscription",
    "TrackerState",
    "aggregate",
    "all_stages",
    "describe",
    "format_duration",
    "is_known_stage",
    "next_stage",
    "stage_label",
    "status_badge",
    "summary_lines",
    "track",
]

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy import for the SQL backend."""
    if name == "SQLJobStore":
        from jobtrack.storage.sql import SQLJobStore

        return SQLJobStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
