"""Exception types raised by job stores and the pipeline worker.

The tracker and presentation layers never let these escape to their callers;
they are turned into fields on the progress view instead.
"""


class JobTrackError(Exception):
    """Base class for all jobtrack errors."""


class JobRecordNotFound(JobTrackError):
    """No job rows exist for a document, or a job id is unknown."""


class StoreTransportError(JobTrackError):
    """The backing store could not be reached or the query failed."""


class JobNotClaimable(JobTrackError):
    """A job could not be moved from queued to running (already claimed or finished)."""
