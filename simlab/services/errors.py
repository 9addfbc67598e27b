"""
Error taxonomy shared by the job store, queue, dispatcher and worker.
"""

from __future__ import annotations


class JobError(Exception):
    """Base class for job lifecycle errors."""

    code = "JOB_ERROR"


class InvalidArgument(JobError):
    code = "INVALID_ARGUMENT"


class NotFound(JobError):
    code = "JOB_NOT_FOUND"


class Conflict(JobError):
    """A conditional transition lost the race; expected under concurrency."""

    code = "CONFLICT"


class StoreUnavailable(JobError):
    code = "STORE_UNAVAILABLE"


class QueueUnavailable(JobError):
    code = "QUEUE_UNAVAILABLE"


class ComputeFailure(JobError):
    """The simulation raised or ran past its timeout."""

    code = "COMPUTE_FAILURE"
