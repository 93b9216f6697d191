"""Job store interfaces and backends."""

from jobtrack.storage.feed import ChangeFeed, FeedSubscription
from jobtrack.storage.interfaces import (
    JobQueueInterface,
    JobRecordStoreInterface,
    Subscription,
)
from jobtrack.storage.memory import InMemoryJobStore

__all__ = [
    "ChangeFeed",
    "FeedSubscription",
    "InMemoryJobStore",
    "JobQueueInterface",
    "JobRecordStoreInterface",
    "Subscription",
]
