"""
Review Session Events.

The engine reports everything it does as typed events on an
EventChannel. Presentation layers (the console UI, tests) consume the
channel with ``async for``; the channel closes after SessionEnded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Union

from .commands import Command, Phase
from .telemetry import SessionStats


@dataclass(frozen=True)
class PhaseChanged:
    phase: Phase


@dataclass(frozen=True)
class CardPresented:
    card_id: str
    index: int
    total: int
    front: str
    back: str
    is_learning: bool


@dataclass(frozen=True)
class Speaking:
    text: str


@dataclass(frozen=True)
class Listening:
    pass


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class CommandReceived:
    command: Command


@dataclass(frozen=True)
class TranscriptReceived:
    text: str
    is_final: bool


@dataclass(frozen=True)
class SessionEnded:
    stats: SessionStats


@dataclass(frozen=True)
class ErrorRaised:
    message: str


@dataclass(frozen=True)
class Explaining:
    pass


@dataclass(frozen=True)
class DeckInfo:
    name: str
    card_count: int


@dataclass(frozen=True)
class UndoAvailability:
    available: bool


@dataclass(frozen=True)
class LearningDue:
    wait_seconds: float


@dataclass(frozen=True)
class CardSuspended:
    card_id: str
    leech: bool = False


@dataclass(frozen=True)
class MicChanged:
    mic_on: bool


@dataclass(frozen=True)
class AudioChanged:
    audio_on: bool


ReviewEvent = Union[
    PhaseChanged,
    CardPresented,
    Speaking,
    Listening,
    Idle,
    CommandReceived,
    TranscriptReceived,
    SessionEnded,
    ErrorRaised,
    Explaining,
    DeckInfo,
    UndoAvailability,
    LearningDue,
    CardSuspended,
    MicChanged,
    AudioChanged,
]

_CLOSED = object()


class EventChannel:
    """Ordered, single-consumer event stream over an asyncio.Queue."""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ReviewEvent) -> None:
        """Queue an event; ignored once the channel is closed."""
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def drain(self) -> list[ReviewEvent]:
        """Take every event queued so far without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                # Keep the end marker for async consumers
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def __aiter__(self) -> AsyncIterator[ReviewEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ReviewEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return
            yield item
