"""
Domain models for persistq — backed by Pydantic v2.

Job is what the consumer sees; QueueState is the engine's exclusively owned
state value (lifecycle flags, total count and the hydrated window).

All models are frozen (immutable). Mutations return new instances via
model_copy(update=...), following a functional-update style.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, JsonValue


class QueueEvent(str, Enum):
    """Notifications a PersistentQueue publishes to its listeners."""

    NEXT = "next"
    EMPTY = "empty"
    ADD = "add"
    DELETE = "delete"
    OPEN = "open"
    CLOSE = "close"
    FATAL = "fatal"


class Job(BaseModel):
    """
    A single persisted unit of work.

    id      — storage-assigned, monotonically increasing, never reused
    payload — any JSON value; immutable once stored
    """

    model_config = ConfigDict(frozen=True)

    id: int
    payload: JsonValue = None


class QueueState(BaseModel):
    """
    Everything the engine knows about the queue, in one value.

    opened  — storage connection established and first window hydrated
    running — consumption triggers are honoured
    empty   — None until open(); afterwards True iff length == 0
    length  — authoritative count of persisted jobs (None until open())
    window  — id-ascending prefix of the persisted backlog held in memory
    """

    model_config = ConfigDict(frozen=True)

    opened: bool = False
    running: bool = False
    empty: bool | None = None
    length: int | None = None
    window: tuple[Job, ...] = ()

    # ------------------------------------------------------------------ #
    # Query helpers                                                        #
    # ------------------------------------------------------------------ #

    def head(self) -> Job | None:
        """The next job to consume, or None when the window is empty."""
        return self.window[0] if self.window else None

    def find(self, job_id: int) -> Job | None:
        """Return the windowed job with the given id, or None if absent."""
        return next((j for j in self.window if j.id == job_id), None)

    # ------------------------------------------------------------------ #
    # Mutation helpers — each returns a new QueueState                    #
    # ------------------------------------------------------------------ #

    def with_window(self, jobs: tuple[Job, ...]) -> "QueueState":
        """Replace the window with a freshly hydrated batch."""
        return self.model_copy(update={"window": jobs})

    def with_job_removed(self, job_id: int) -> "QueueState":
        """Drop a job from the window. Returns self when it is not windowed."""
        window = tuple(j for j in self.window if j.id != job_id)
        if len(window) == len(self.window):
            return self
        return self.model_copy(update={"window": window})

    def with_length(self, length: int) -> "QueueState":
        """Record the storage counter; emptiness follows the count."""
        return self.model_copy(update={"length": length, "empty": length == 0})

    def with_running(self, running: bool) -> "QueueState":
        return self.model_copy(update={"running": running})

    def opened_with(self, length: int, window: tuple[Job, ...]) -> "QueueState":
        """State right after a successful open()."""
        return self.model_copy(
            update={
                "opened": True,
                "length": length,
                "window": window,
                "empty": length == 0,
            }
        )
