"""
Exception hierarchy for persistq.

PersistQError
├── ConfigurationError     — invalid constructor arguments
├── QueueNotOpenError      — operation needs an open queue
├── QueueAlreadyOpenError  — open() called twice
├── PayloadError           — payload is not JSON-serializable / not decodable
├── JobNotFoundError       — job id no longer present in storage
├── StorageError           — underlying storage failure (wraps original exception)
└── FatalQueueError        — the window and the counter can no longer be trusted
"""

from __future__ import annotations


class PersistQError(Exception):
    """Base class for all persistq exceptions."""


class ConfigurationError(PersistQError):
    """Raised synchronously when the queue is constructed with bad arguments."""


class QueueNotOpenError(PersistQError):
    """
    Raised when an operation that needs an open queue is called before open().

    Recoverable: call open() and retry.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Call open() before calling {operation}()")


class QueueAlreadyOpenError(PersistQError):
    """Raised when open() is called on a queue that is already open."""


class PayloadError(PersistQError):
    """Raised when a payload cannot be serialized to, or parsed from, JSON."""


class JobNotFoundError(PersistQError):
    """Raised when a removal targets a job id that is not in storage."""

    def __init__(self, job_id: int | None) -> None:
        self.job_id = job_id
        if job_id is None:
            super().__init__("No job to remove: the window is empty")
        else:
            super().__init__(f"Job {job_id!r} was not removed from queue")


class StorageError(PersistQError):
    """
    Wraps an underlying failure from a storage adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class FatalQueueError(PersistQError):
    """
    A failure inside the consumption path after which the in-memory window
    and total count may have diverged from storage.

    Published on the queue's fatal channel; the hosting application decides
    how to terminate.

    Attributes
    ----------
    cause : Exception
        The error that made the queue state untrustworthy.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")
