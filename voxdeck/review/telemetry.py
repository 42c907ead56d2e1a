"""
Session Telemetry.

Counts what happened in a review session: cards graded, grades by
button and wall-clock duration. Counters are reversible so an undo
leaves them exactly as they were before the grade.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from voxdeck.scheduling.models import Grade


def _empty_ratings() -> dict[Grade, int]:
    return {grade: 0 for grade in Grade}


@dataclass
class SessionStats:
    """Running totals for one session."""

    started_at: datetime | None = None
    ended_at: datetime | None = None
    cards_reviewed: int = 0
    ratings: dict[Grade, int] = field(default_factory=_empty_ratings)
    total_response_ms: int = 0

    def record(self, grade: Grade, response_ms: int = 0) -> None:
        self.cards_reviewed += 1
        self.ratings[grade] += 1
        self.total_response_ms += response_ms

    def revert(self, grade: Grade, response_ms: int = 0) -> None:
        """Take back one ``record`` call."""
        self.cards_reviewed = max(0, self.cards_reviewed - 1)
        self.ratings[grade] = max(0, self.ratings[grade] - 1)
        self.total_response_ms = max(0, self.total_response_ms - response_ms)

    def finish(self, now: datetime) -> None:
        self.ended_at = now

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.ended_at is None:
            return 0.0
        return max(0.0, (self.ended_at - self.started_at).total_seconds())

    @property
    def accuracy(self) -> float:
        """Share of grades that were not Again."""
        if self.cards_reviewed == 0:
            return 0.0
        return 1.0 - self.ratings[Grade.AGAIN] / self.cards_reviewed

    @property
    def avg_response_ms(self) -> float:
        if self.cards_reviewed == 0:
            return 0.0
        return self.total_response_ms / self.cards_reviewed

    def to_dict(self) -> dict:
        return {
            "cards_reviewed": self.cards_reviewed,
            "ratings": {grade.label: count for grade, count in self.ratings.items()},
            "duration_seconds": round(self.duration_seconds, 3),
            "accuracy": round(self.accuracy, 4),
        }
