"""In-process change feed that fans row changes out to subscribers.

Stores call ``ChangeFeed.publish`` after every write. Each subscriber is
filtered on ``document_id`` and receives the new row on the event loop it
subscribed from, via ``call_soon_threadsafe``. Writers can therefore run in
worker threads (SQL sessions under ``asyncio.to_thread``) while subscribers
stay on the loop.

Delivery is scheduled, never inline, so a subscriber never re-enters its own
callback from inside a write it made.
"""

import asyncio
import logging
import threading

from jobtrack.records import JobRecord
from jobtrack.storage.interfaces import ChangeCallback, ErrorCallback, Subscription

logger = logging.getLogger(__name__)


class FeedSubscription(Subscription):
    """A single document-filtered subscription on a ``ChangeFeed``."""

    def __init__(
        self,
        feed: "ChangeFeed",
        document_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._feed = feed
        self.document_id = document_id
        self._on_change = on_change
        self._on_error = on_error
        self._loop = loop
        self._active = True
        self._dropped = False

    @property
    def active(self) -> bool:
        return self._active and not self._dropped

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed._remove(self)

    def _deliver(self, record: JobRecord) -> None:
        # Re-checked on the loop: cancel() may have run after scheduling.
        if self.active:
            self._on_change(record)

    def _deliver_error(self, error: Exception) -> None:
        if self._active and self._on_error is not None:
            self._on_error(error)

    def _schedule(self, callback, argument) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, argument)
        except RuntimeError:
            # loop closed underneath us
            logger.debug("Dropping change for %s: subscriber loop is closed", self.document_id)
            self.cancel()


class ChangeFeed:
    """Realtime fan-out of job row changes, keyed by document id.

    Thread-safe: ``publish`` may be called from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[FeedSubscription]] = {}
        self._connected = True

    def subscribe(
        self,
        document_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> FeedSubscription:
        """Register a subscriber. Must be called from inside a running loop."""
        loop = asyncio.get_running_loop()
        subscription = FeedSubscription(self, document_id, on_change, on_error, loop)
        with self._lock:
            self._subscribers.setdefault(document_id, []).append(subscription)
        logger.debug("Subscribed to job changes for %s", document_id)
        return subscription

    def publish(self, record: JobRecord) -> int:
        """Schedule delivery of ``record`` to its document's subscribers.

        Returns the number of subscribers the change was scheduled for.
        """
        if not self._connected:
            return 0
        with self._lock:
            targets = list(self._subscribers.get(record.document_id, ()))
        for subscription in targets:
            subscription._schedule(subscription._deliver, record)
        return len(targets)

    def disconnect(self, error: Exception) -> None:
        """Drop every channel, notifying subscribers through ``on_error``.

        Existing subscriptions are dead from here on, even after
        ``reconnect``; subscribers must subscribe again.
        """
        self._connected = False
        with self._lock:
            targets = [s for subs in self._subscribers.values() for s in subs]
            self._subscribers.clear()
        for subscription in targets:
            subscription._dropped = True
        logger.warning("Change feed disconnected: %s", error)
        for subscription in targets:
            subscription._schedule(subscription._deliver_error, error)

    def reconnect(self) -> None:
        self._connected = True

    def subscriber_count(self, document_id: str | None = None) -> int:
        with self._lock:
            if document_id is not None:
                return len(self._subscribers.get(document_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def _remove(self, subscription: FeedSubscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.document_id)
            if subs and subscription in subs:
                subs.remove(subscription)
                if not subs:
                    del self._subscribers[subscription.document_id]
        logger.debug("Cancelled job change subscription for %s", subscription.document_id)
