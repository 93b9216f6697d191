"""Storage interface definitions for job records.

Two sides of the ``processing_jobs`` table are modelled separately:

- ``JobRecordStoreInterface`` is what clients need to observe progress:
  fetch every job for a document, and subscribe to changes of those jobs.
- ``JobQueueInterface`` is what the processing backend uses to move jobs
  through their lifecycle (queued → running → done | error).
"""

from abc import ABC, abstractmethod
from typing import Any, Callable

from jobtrack.records import JobRecord
from jobtrack.stages import Stage

ChangeCallback = Callable[[JobRecord], None]
ErrorCallback = Callable[[Exception], None]


class Subscription(ABC):
    """Handle to an open change subscription."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivery and release the channel.

        Must be synchronous and safe to call more than once. No callback is
        invoked after ``cancel`` returns.
        """

    @property
    @abstractmethod
    def active(self) -> bool:
        """True until the subscription is cancelled."""


class JobRecordStoreInterface(ABC):
    """Read-and-subscribe access to job records, keyed by document."""

    @abstractmethod
    async def fetch_all(self, document_id: str) -> list[JobRecord]:
        """Return every job record for ``document_id``.

        Raises:
            JobRecordNotFound: The document has no job rows yet.
            StoreTransportError: The store could not be queried.
        """

    @abstractmethod
    async def subscribe(
        self,
        document_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to inserts and updates of jobs for ``document_id``.

        ``on_change`` receives the new row on the caller's event loop. Each
        change is delivered at least once; changes to different rows may
        arrive in any order, but a single row's changes never go backwards.
        Changes made before the subscription is established are not
        replayed, so callers should fetch first.

        ``on_error`` is called if the channel drops. The subscription is not
        re-established automatically.

        Raises:
            StoreTransportError: The channel could not be opened.
        """


class JobQueueInterface(ABC):
    """Lifecycle operations the processing backend performs on jobs."""

    @abstractmethod
    async def enqueue(self, document_id: str, stage: Stage, input_data: Any = None) -> JobRecord:
        """Create a queued job for ``stage`` of ``document_id``."""

    @abstractmethod
    async def claim(self, job_id: str) -> JobRecord:
        """Move a queued job to running and stamp ``started_at``.

        Raises:
            JobRecordNotFound: No job has this id.
            JobNotClaimable: The job is not queued.
        """

    @abstractmethod
    async def complete(self, job_id: str, output_data: Any = None) -> JobRecord:
        """Mark a job done, storing its output."""

    @abstractmethod
    async def fail(self, job_id: str, message: str) -> JobRecord:
        """Mark a job as errored with a human-readable message."""

    @abstractmethod
    async def list_queued(self, stage: Stage, limit: int = 5) -> list[JobRecord]:
        """Return up to ``limit`` queued jobs for ``stage``, oldest first."""
