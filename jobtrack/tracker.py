"""Live progress tracking for a single document.

``LiveProgressTracker`` keeps a ``ProgressView`` in step with the job rows of
one document. It fetches the current rows, then subscribes to row changes and
re-aggregates after every change. Consumers read ``tracker.view`` or register
a listener; only the latest view is kept.

Lifecycle:

    uninitialized --start()--> syncing --fetch settled--> subscribed
          any state --dispose()--> torn_down
          any state --reset(doc)--> syncing (for the new document)

Each call to ``start``/``reset`` opens a new *session* that owns its record
set and its subscription handle. Tearing a session down closes it before
anything else happens, and every callback checks that its session is still
the current, open one. A fetch result or change event that belongs to a
closed session is dropped, so a late event for the previous document can
never leak into the view for the next one.

Failures never propagate out of the tracker. A failed fetch leaves the
default view in place with ``sync_error`` set and still subscribes; the next
change event triggers a refetch. A dropped channel is reported through
``sync_error`` but is not reconnected here: call ``reset`` to re-sync.

Typical usage:
    ```python
    async with track(store, document_id) as tracker:
        tracker.add_listener(lambda view: print(describe(view)))
        await tracker.wait_for(lambda view: view.is_finished)
    ```
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Callable

from jobtrack.errors import JobRecordNotFound, StoreTransportError
from jobtrack.progress import ProgressView, aggregate
from jobtrack.records import JobRecord
from jobtrack.stages import Stage, stages_before
from jobtrack.storage.interfaces import JobRecordStoreInterface, Subscription

logger = logging.getLogger(__name__)

ViewListener = Callable[[ProgressView], None]


class TrackerState(str, Enum):
    """Lifecycle state of a ``LiveProgressTracker``."""

    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    SUBSCRIBED = "subscribed"
    TORN_DOWN = "torn_down"


class _Session:
    """Records and channel handle owned by one tracked document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.records: OrderedDict[Stage, JobRecord] = OrderedDict()
        self.subscription: Subscription | None = None
        self.refetch_task: asyncio.Task | None = None
        self.closed = False
        self.fetch_error: str | None = None
        self.channel_error: str | None = None

    def merge(self, record: JobRecord) -> bool:
        """Make ``record`` the latest for its stage. Returns False if it is stale."""
        existing = self.records.get(record.stage)
        if (
            existing is not None
            and existing.version is not None
            and record.version is not None
            and record.version < existing.version
        ):
            return False
        # moved to the end so arrival order is preserved for aggregation
        self.records.pop(record.stage, None)
        self.records[record.stage] = record
        return True

    def reconcile(self, records: list[JobRecord]) -> None:
        """Merge a refetched snapshot without regressing newer events.

        Missing stages are filled in. A stage already held is replaced only
        when both sides carry versions and the fetched row is newer.
        """
        for record in records:
            if record.stage is None:
                continue
            held = self.records.get(record.stage)
            if held is None:
                self.records[record.stage] = record
            elif held.version is not None and record.version is not None and record.version > held.version:
                self.merge(record)

    def has_gap_before(self, stage: Stage) -> bool:
        return any(earlier not in self.records for earlier in stages_before(stage))

    @property
    def sync_error(self) -> str | None:
        return self.channel_error or self.fetch_error

    def close(self) -> None:
        self.closed = True
        if self.subscription is not None:
            self.subscription.cancel()
        if self.refetch_task is not None and not self.refetch_task.done():
            self.refetch_task.cancel()


class LiveProgressTracker:
    """Keeps a ``ProgressView`` for one document in sync with its job rows.

    The tracker exclusively owns its record set; nothing else mutates it. It
    is not thread-safe and must be used from a single event loop.

    Args:
        store: Backing store to fetch from and subscribe to.
        listener: Optional callback invoked with every new view.
    """

    def __init__(self, store: JobRecordStoreInterface, listener: ViewListener | None = None) -> None:
        self._store = store
        self._session: _Session | None = None
        self._state = TrackerState.UNINITIALIZED
        self._view = ProgressView()
        self._listeners: list[ViewListener] = []
        self._changed = asyncio.Event()
        if listener is not None:
            self._listeners.append(listener)

    @classmethod
    async def open(
        cls,
        store: JobRecordStoreInterface,
        document_id: str,
        listener: ViewListener | None = None,
    ) -> "LiveProgressTracker":
        """Create a tracker and sync it to ``document_id``."""
        tracker = cls(store, listener)
        await tracker.start(document_id)
        return tracker

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def view(self) -> ProgressView:
        """The latest progress view."""
        return self._view

    @property
    def document_id(self) -> str | None:
        return self._session.document_id if self._session is not None else None

    @property
    def records(self) -> tuple[JobRecord, ...]:
        """Current record set, one per stage, in arrival order."""
        if self._session is None:
            return ()
        return tuple(self._session.records.values())

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        """Register ``listener`` for new views. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self, document_id: str) -> None:
        """Begin tracking ``document_id``; same as ``reset``."""
        await self.reset(document_id)

    async def reset(self, document_id: str) -> None:
        """Tear down the current session and re-sync against ``document_id``.

        The previous subscription is cancelled before the new fetch starts.
        Calling this again for the same document re-syncs from scratch, which
        is how a host reconnects after a dropped channel. The current view
        stays up during a same-document re-sync instead of dropping to 0%.
        """
        previous = self.document_id
        self._close_session()
        session = _Session(document_id)
        self._session = session
        self._state = TrackerState.SYNCING
        if document_id != previous:
            self._publish(aggregate((), document_id))
        logger.debug("Syncing job progress for %s", document_id)

        records = await self._fetch(session)
        if not self._is_current(session):
            return
        if records is not None:
            for record in records:
                if record.stage is not None:
                    session.merge(record)
        self._refresh(session)

        await self._open_channel(session)

    def dispose(self) -> None:
        """Stop tracking. Idempotent; the last view stays readable."""
        if self._state is TrackerState.TORN_DOWN:
            return
        self._close_session()
        self._state = TrackerState.TORN_DOWN
        logger.debug("Job progress tracker torn down")

    async def wait_for(
        self,
        predicate: Callable[[ProgressView], bool],
        timeout: float | None = None,
    ) -> ProgressView:
        """Wait until the current view satisfies ``predicate`` and return it.

        Raises:
            TimeoutError: ``timeout`` seconds passed first.
        """

        async def _wait() -> ProgressView:
            while not predicate(self._view):
                await self._changed.wait()
            return self._view

        return await asyncio.wait_for(_wait(), timeout)

    async def __aenter__(self) -> "LiveProgressTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.dispose()

    def _is_current(self, session: _Session) -> bool:
        return not session.closed and session is self._session

    def _close_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    async def _fetch(self, session: _Session) -> list[JobRecord] | None:
        """Fetch the document's rows, recording failures on the session.

        Returns None when the fetch failed.
        """
        try:
            records = await self._store.fetch_all(session.document_id)
        except JobRecordNotFound:
            session.fetch_error = None
            return []
        except StoreTransportError as exc:
            logger.warning("Error fetching processing jobs for %s: %s", session.document_id, exc)
            session.fetch_error = str(exc) or "store unreachable"
            return None
        except Exception as exc:
            logger.exception("Unexpected error fetching processing jobs for %s", session.document_id)
            session.fetch_error = str(exc) or type(exc).__name__
            return None
        session.fetch_error = None
        return [record for record in records if record.document_id == session.document_id]

    async def _open_channel(self, session: _Session) -> None:
        try:
            subscription = await self._store.subscribe(
                session.document_id,
                lambda record: self._on_change(session, record),
                lambda error: self._on_channel_error(session, error),
            )
        except Exception as exc:
            if not self._is_current(session):
                return
            logger.warning("Could not subscribe to job changes for %s: %s", session.document_id, exc)
            session.channel_error = str(exc) or type(exc).__name__
            self._state = TrackerState.SUBSCRIBED
            self._refresh(session)
            return

        if not self._is_current(session):
            # disposed while the channel was opening
            subscription.cancel()
            return
        session.subscription = subscription
        self._state = TrackerState.SUBSCRIBED

    def _on_change(self, session: _Session, record: JobRecord) -> None:
        if not self._is_current(session):
            return
        if record.document_id != session.document_id:
            return
        if record.stage is None:
            logger.debug("Ignoring job %s with unknown stage %r", record.job_id, record.raw_stage)
            return
        if not session.merge(record):
            logger.debug("Dropping stale update for %s/%s", session.document_id, record.raw_stage)
            return
        self._refresh(session)

        if session.fetch_error is not None or session.has_gap_before(record.stage):
            self._schedule_refetch(session)

    def _on_channel_error(self, session: _Session, error: Exception) -> None:
        if not self._is_current(session):
            return
        logger.warning("Job change channel for %s dropped: %s", session.document_id, error)
        session.channel_error = str(error) or type(error).__name__
        self._refresh(session)

    def _schedule_refetch(self, session: _Session) -> None:
        if session.refetch_task is not None and not session.refetch_task.done():
            return
        session.refetch_task = asyncio.get_running_loop().create_task(self._refetch(session))

    async def _refetch(self, session: _Session) -> None:
        records = await self._fetch(session)
        if not self._is_current(session):
            return
        if records is not None:
            session.reconcile(records)
        self._refresh(session)

    def _refresh(self, session: _Session) -> None:
        view = aggregate(session.records.values(), session.document_id)
        if session.sync_error is not None:
            view = view.model_copy(update={"sync_error": session.sync_error})
        self._publish(view)

    def _publish(self, view: ProgressView) -> None:
        if view == self._view:
            return
        self._view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("Progress listener failed")
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()


@asynccontextmanager
async def track(
    store: JobRecordStoreInterface,
    document_id: str,
    listener: ViewListener | None = None,
) -> AsyncIterator[LiveProgressTracker]:
    """Track ``document_id`` for the duration of the block, then dispose."""
    tracker = LiveProgressTracker(store, listener)
    try:
        await tracker.start(document_id)
        yield tracker
    finally:
        tracker.dispose()
