"""
Collaborators the review engine depends on.

The engine only talks to these protocols. Implementations:
- CardStore: storage.SqliteCardStore, integrations.CardApiClient
- Explainer: integrations.ExplanationClient
- SpeechOutput / TranscriptSource: cli.console_io
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Literal, Protocol

from voxdeck.scheduling.models import DeckSettings, Grade, MemoryState

from .cards import StudyCard

CramState = Literal["new", "learning", "review"]


@dataclass(frozen=True)
class DueFilters:
    """Optional restrictions on which cards a session fetches."""

    tags: tuple[str, ...] = ()
    cram: bool = False
    cram_state: CramState | None = None


@dataclass
class DueBatch:
    """Cards fetched for a session plus the deck's scheduling settings."""

    deck_id: str
    deck_name: str
    settings: DeckSettings
    cards: list[StudyCard] = field(default_factory=list)


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool = True


class CardStore(Protocol):
    async def fetch_due(self, deck_id: str, limit: int, filters: DueFilters) -> DueBatch: ...

    async def persist_grade(
        self,
        card_id: str,
        memory: MemoryState,
        *,
        grade: Grade,
        previous: MemoryState,
        duration_ms: int = 0,
    ) -> None: ...

    async def revert_grade(self, card_id: str, memory: MemoryState) -> None: ...

    async def set_suspended(self, card_id: str, suspended: bool) -> None: ...


class SpeechOutput(Protocol):
    async def speak(self, text: str) -> None: ...

    def stop(self) -> None: ...

    def last_spoken_text(self) -> str: ...


class TranscriptSource(Protocol):
    def __aiter__(self) -> AsyncIterator[TranscriptEvent]: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...


class Explainer(Protocol):
    async def explain(self, front: str, back: str) -> str: ...
