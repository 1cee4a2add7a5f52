"""
Signals — the messages the queue engine's dispatcher processes, one at a time,
in arrival order.

Every public operation that reads or writes storage, and every internal
"attempt to advance" request, becomes one of these variants. Request signals
carry a future that resolves when the dispatcher has handled them; Trigger is
fire-and-forget.
"""

from __future__ import annotations

import asyncio
import dataclasses

from pydantic import JsonValue


@dataclasses.dataclass
class Trigger:
    """Attempt to emit the next job (posted by start, add-while-empty and done)."""


@dataclasses.dataclass
class Add:
    """Persist a serialized payload."""

    payload: JsonValue
    text: str
    future: asyncio.Future[int]


@dataclasses.dataclass
class Remove:
    """
    Delete a job; job_id None means the head of the window.

    completed distinguishes done() (trigger another attempt, failures are
    fatal) from delete() (emit a delete event, failures go to the caller).
    """

    job_id: int | None
    completed: bool
    future: asyncio.Future[int]


@dataclasses.dataclass
class Has:
    job_id: int
    future: asyncio.Future[bool]


@dataclasses.dataclass
class Search:
    """All stored ids whose text equals `text`, ascending."""

    text: str
    future: asyncio.Future[list[int]]


@dataclasses.dataclass
class FirstMatch:
    """Earliest id whose stored text equals `text`: window first, then storage."""

    text: str
    future: asyncio.Future[int | None]


Signal = Trigger | Add | Remove | Has | Search | FirstMatch
