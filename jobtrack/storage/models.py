"""
SQL table for pipeline jobs.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from jobtrack.records import JobRecord


class ProcessingJob(SQLModel, table=True):
    """
    One pipeline stage job for a document (queued, running, done, or error).
    """

    __tablename__ = "processing_jobs"

    id: str = Field(primary_key=True, description="UUID string for the job")
    document_id: str = Field(index=True, description="Document this job processes")
    stage: str = Field(description="ingest | ocr | embed")
    status: Optional[str] = Field(default="queued", index=True, description="queued | running | done | error")
    created_at: datetime = Field(description="When the job was enqueued")
    started_at: Optional[datetime] = Field(default=None, description="When the job was claimed")
    completed_at: Optional[datetime] = Field(default=None, description="When the job finished or failed")
    error_message: Optional[str] = Field(default=None, description="Error message if status is error")
    input_data: Optional[Any] = Field(default=None, sa_column=Column(JSON), description="Stage input")
    output_data: Optional[Any] = Field(default=None, sa_column=Column(JSON), description="Stage output")
    version: int = Field(default=1, description="Incremented on every write")

    def to_record(self) -> JobRecord:
        return JobRecord.from_row(
            {
                "id": self.id,
                "document_id": self.document_id,
                "stage": self.stage,
                "status": self.status,
                "created_at": self.created_at,
                "started_at": self.started_at,
                "completed_at": self.completed_at,
                "error_message": self.error_message,
                "input_data": self.input_data,
                "output_data": self.output_data,
                "version": self.version,
            }
        )
