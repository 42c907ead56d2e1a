"""
Session queues.

A live session holds two queues:

- ReviewQueue: cards fetched at session start, in arrival order
- LearningQueue: cards mid-step that are due again within minutes,
  kept sorted by due time

A card is in at most one queue at a time; presenting a card removes it.
"""

from __future__ import annotations

import bisect
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Union

from .cards import StudyCard


@dataclass(order=True)
class LearningEntry:
    """A card waiting in the learning queue until ``due``."""

    due: datetime
    seq: int
    card: StudyCard = field(compare=False)


@dataclass(frozen=True)
class Wait:
    """The next learning card is close; re-check after ``seconds``."""

    seconds: float


@dataclass(frozen=True)
class End:
    """Both queues are exhausted."""


NextCard = Union[StudyCard, Wait, End]


class ReviewQueue:
    """FIFO of due cards not yet shown this session."""

    def __init__(self, cards: Iterable[StudyCard] = ()):
        self._cards: deque[StudyCard] = deque(cards)

    def __len__(self) -> int:
        return len(self._cards)

    def __iter__(self):
        return iter(self._cards)

    def push_front(self, card: StudyCard) -> None:
        self._cards.appendleft(card)

    def pop_unstudied(self, studied_note_ids: set[str]) -> StudyCard | None:
        """
        Pop the first card whose note has not been studied this session.

        Siblings met on the way are removed, not kept for later.
        """
        while self._cards:
            card = self._cards.popleft()
            if card.note_id in studied_note_ids:
                continue
            return card
        return None

    def discard(self, card_id: str) -> bool:
        for card in self._cards:
            if card.id == card_id:
                self._cards.remove(card)
                return True
        return False


class LearningQueue:
    """Cards due again within the session, ordered by due time."""

    def __init__(self):
        self._entries: list[LearningEntry] = []
        self._seq = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, card_id: object) -> bool:
        return any(entry.card.id == card_id for entry in self._entries)

    def insert(self, card: StudyCard, due: datetime) -> LearningEntry:
        """Insert keeping due order; equal due times keep insertion order."""
        self._seq += 1
        entry = LearningEntry(due=due, seq=self._seq, card=card)
        bisect.insort(self._entries, entry)
        return entry

    def peek(self) -> LearningEntry | None:
        return self._entries[0] if self._entries else None

    def pop_due(self, now: datetime) -> StudyCard | None:
        """Pop the earliest entry if it is due at ``now``."""
        if self._entries and self._entries[0].due <= now:
            return self._entries.pop(0).card
        return None

    def discard(self, card_id: str) -> bool:
        """Remove every entry for ``card_id``; True if anything was removed."""
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.card.id != card_id]
        return len(self._entries) != before


def pick_next(
    review: ReviewQueue,
    learning: LearningQueue,
    studied_note_ids: set[str],
    now: datetime,
    wait_threshold: float,
) -> NextCard:
    """
    Choose what to present next.

    Priority:
    1. learning card due now
    2. review card whose note was not studied yet
    3. Wait when the next learning card is at most ``wait_threshold`` seconds away
    4. End
    """
    card = learning.pop_due(now)
    if card is not None:
        return card

    card = review.pop_unstudied(studied_note_ids)
    if card is not None:
        return card

    head = learning.peek()
    if head is not None:
        wait = (head.due - now).total_seconds()
        if wait <= wait_threshold:
            return Wait(seconds=max(0.0, wait))

    return End()
