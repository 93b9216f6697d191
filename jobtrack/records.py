"""Job records as read from the backing store.

A ``JobRecord`` is one row of the ``processing_jobs`` table: the status of a
single (document, stage) pair. Rows arrive from the store with loosely typed
string columns; they are parsed here into closed enumerations. Values that do
not fit are kept verbatim in ``raw_stage`` / ``raw_status`` so they can still
be shown, but they never take part in aggregation.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field, model_validator

from jobtrack.stages import Stage, is_known_stage


class JobStatus(str, Enum):
    """Status of a single pipeline job."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    UNRECOGNIZED = "unrecognized"
    """Any status string the store reports that is not one of the above."""

    @classmethod
    def parse(cls, value: object) -> "JobStatus":
        """Map a raw status value onto the enum, falling back to UNRECOGNIZED."""
        if isinstance(value, JobStatus):
            return value
        if isinstance(value, str):
            try:
                status = cls(value)
            except ValueError:
                return cls.UNRECOGNIZED
            return status
        return cls.UNRECOGNIZED


class JobRecord(BaseModel):
    """The persisted status of one pipeline stage for one document.

    Records are created and mutated only by the processing backend; this
    package reads them. Construct with plain strings for ``stage`` and
    ``status``; the validator fills in the parsed and raw fields:

        ```python
        record = JobRecord(document_id="doc-1", stage="ocr", status="processing")
        record.stage       # Stage.OCR
        record.status      # JobStatus.UNRECOGNIZED
        record.raw_status  # "processing"
        ```
    """

    model_config = {"frozen": True}

    job_id: str | None = Field(default=None, description="Row identifier in the store.")
    document_id: str = Field(description="Document this job belongs to.")
    stage: Stage | None = Field(default=None, description="Pipeline stage, or None if not in the registry.")
    raw_stage: str = Field(default="", description="Stage string exactly as stored.")
    status: JobStatus = Field(default=JobStatus.QUEUED, description="Parsed job status.")
    raw_status: str = Field(default="queued", description="Status string exactly as stored.")
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    error_message: str | None = Field(default=None, description="Failure detail when status is error.")
    input_data: Any = Field(default=None, description="Opaque stage input.")
    output_data: Any = Field(default=None, description="Opaque stage output, passed through untouched.")
    version: int | None = Field(
        default=None,
        ge=0,
        description="Monotonic per-row sequence number, when the store provides one.",
    )

    @model_validator(mode="before")
    @classmethod
    def _split_raw_values(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)

        stage = data.get("stage")
        if isinstance(stage, Stage):
            data.setdefault("raw_stage", stage.value)
        elif stage is not None:
            data.setdefault("raw_stage", str(stage))
            data["stage"] = Stage(stage) if is_known_stage(stage) else None

        status = data.get("status")
        if status is None:
            # A NULL status column reads as the table default.
            data.pop("status", None)
        elif isinstance(status, JobStatus):
            data.setdefault("raw_status", status.value)
        else:
            data.setdefault("raw_status", str(status))
            data["status"] = JobStatus.parse(status)
        return data

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "JobRecord":
        """Build a record from a ``processing_jobs`` row dict.

        Accepts either ``id`` or ``job_id`` for the row identifier. Unknown
        columns are ignored.
        """
        fields = {key: value for key, value in row.items() if key in cls.model_fields}
        if "job_id" not in fields and row.get("id") is not None:
            fields["job_id"] = str(row["id"])
        return cls.model_validate(fields)

    @property
    def duration(self) -> timedelta | None:
        """Time between start and completion, when both are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        try:
            return self.completed_at - self.started_at
        except TypeError:
            # naive and aware timestamps mixed
            return None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.ERROR)
