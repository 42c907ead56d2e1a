"""
Scheduling data model.

Grades, card states, the persisted per-card memory state and the
per-deck configuration consumed by the schedulers.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

# =============================================================================
# Enums
# =============================================================================


class Grade(IntEnum):
    """Learner feedback on a card, ordered by strength."""

    AGAIN = 1  # Forgot
    HARD = 2  # Recalled with serious difficulty
    GOOD = 3  # Recalled after some hesitation
    EASY = 4  # Instant recall

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> Grade:
        """Parse 'again' / 'hard' / 'good' / 'easy' (case-insensitive)."""
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown grade: {label!r}") from None


class CardState(IntEnum):
    """Scheduling state. Values match the persisted integer column."""

    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3

    @property
    def is_stepping(self) -> bool:
        return self in (CardState.LEARNING, CardState.RELEARNING)


# =============================================================================
# Memory State
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_instant(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        instant = value
    else:
        instant = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


@dataclass(frozen=True)
class MemoryState:
    """
    Persisted forgetting-curve parameters and scheduling state of one card.

    Invariant: ``reps == 0`` exactly when ``state`` is NEW.
    ``step_index`` is only meaningful while LEARNING or RELEARNING.
    """

    due: datetime
    state: CardState = CardState.NEW
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    reps: int = 0
    lapses: int = 0
    last_review: datetime | None = None
    step_index: int = 0

    @classmethod
    def new(cls, due: datetime | None = None) -> MemoryState:
        """Fresh state for a card that has never been graded."""
        return cls(due=due or utc_now())

    def evolve(self, **changes: Any) -> MemoryState:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON transport."""
        return {
            "due": self.due.isoformat(),
            "state": int(self.state),
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "last_review": self.last_review.isoformat() if self.last_review else None,
            "step_index": self.step_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryState:
        """Parse a serialized memory state; missing fields fall back to New defaults."""
        due = _parse_instant(data.get("due")) or utc_now()
        return cls(
            due=due,
            state=CardState(int(data.get("state", 0))),
            stability=float(data.get("stability", 0.0)),
            difficulty=float(data.get("difficulty", 0.0)),
            elapsed_days=float(data.get("elapsed_days", 0.0)),
            scheduled_days=float(data.get("scheduled_days", 0.0)),
            reps=int(data.get("reps", 0)),
            lapses=int(data.get("lapses", 0)),
            last_review=_parse_instant(data.get("last_review")),
            step_index=int(data.get("step_index", 0)),
        )


# =============================================================================
# Configuration
# =============================================================================

# Bounds applied to user-supplied deck settings
RETENTION_BOUNDS = (0.5, 0.99)
MAX_INTERVAL_BOUNDS = (1, 36500)
LEECH_THRESHOLD_BOUNDS = (1, 99)
DAILY_CAP_BOUNDS = (0, 9999)
MAX_STEP_MINUTES = 1440.0 * 365


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    return max(bounds[0], min(bounds[1], value))


def clamp_steps(steps: Any) -> tuple[float, ...]:
    """Drop non-positive or non-numeric delays and cap the rest."""
    cleaned: list[float] = []
    for raw in steps or ():
        try:
            minutes = float(raw)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(minutes) or minutes <= 0:
            continue
        cleaned.append(min(minutes, MAX_STEP_MINUTES))
    return tuple(cleaned)


def parse_steps(text: str) -> tuple[float, ...]:
    """Parse '1, 10' style step lists. Blank means no steps."""
    return clamp_steps(part for part in text.replace(" ", "").split(",") if part)


@dataclass(frozen=True)
class SchedulerConfig:
    """Per-deck inputs of the step and interval schedulers."""

    request_retention: float = 0.9
    maximum_interval: int = 36500
    learning_steps: tuple[float, ...] = (1.0, 10.0)
    relearning_steps: tuple[float, ...] = (10.0,)
    leech_threshold: int = 8

    def clamped(self) -> SchedulerConfig:
        return SchedulerConfig(
            request_retention=_clamp(float(self.request_retention), RETENTION_BOUNDS),
            maximum_interval=int(_clamp(round(self.maximum_interval), MAX_INTERVAL_BOUNDS)),
            learning_steps=clamp_steps(self.learning_steps),
            relearning_steps=clamp_steps(self.relearning_steps),
            leech_threshold=int(_clamp(round(self.leech_threshold), LEECH_THRESHOLD_BOUNDS)),
        )


@dataclass(frozen=True)
class DeckSettings:
    """Everything configurable per deck, including daily caps."""

    new_cards_per_day: int = 20
    max_reviews_per_day: int = 200
    desired_retention: float = 0.9
    max_interval: int = 36500
    leech_threshold: int = 8
    learning_steps: tuple[float, ...] = field(default=(1.0, 10.0))
    relearning_steps: tuple[float, ...] = field(default=(10.0,))

    def clamped(self) -> DeckSettings:
        """Return a copy with every value pulled into its documented range."""
        scheduler = self.scheduler_config()
        return DeckSettings(
            new_cards_per_day=int(_clamp(round(self.new_cards_per_day), DAILY_CAP_BOUNDS)),
            max_reviews_per_day=int(_clamp(round(self.max_reviews_per_day), DAILY_CAP_BOUNDS)),
            desired_retention=scheduler.request_retention,
            max_interval=scheduler.maximum_interval,
            leech_threshold=scheduler.leech_threshold,
            learning_steps=scheduler.learning_steps,
            relearning_steps=scheduler.relearning_steps,
        )

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            request_retention=self.desired_retention,
            maximum_interval=self.max_interval,
            learning_steps=tuple(self.learning_steps),
            relearning_steps=tuple(self.relearning_steps),
            leech_threshold=self.leech_threshold,
        ).clamped()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["learning_steps"] = list(self.learning_steps)
        data["relearning_steps"] = list(self.relearning_steps)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: DeckSettings | None = None) -> DeckSettings:
        """Merge a partial payload over ``defaults`` and clamp the result."""
        base = defaults or cls()

        def number(key: str, cast: type) -> Any:
            value = data.get(key)
            try:
                parsed = float(value)
            except (TypeError, ValueError):
                return getattr(base, key)
            if not math.isfinite(parsed):
                return getattr(base, key)
            return cast(parsed) if cast is float else cast(round(parsed))

        def steps(key: str) -> tuple[float, ...]:
            value = data.get(key)
            if value is None:
                return tuple(getattr(base, key))
            if isinstance(value, str):
                return parse_steps(value)
            return clamp_steps(value)

        return cls(
            new_cards_per_day=number("new_cards_per_day", int),
            max_reviews_per_day=number("max_reviews_per_day", int),
            desired_retention=number("desired_retention", float),
            max_interval=number("max_interval", int),
            leech_threshold=number("leech_threshold", int),
            learning_steps=steps("learning_steps"),
            relearning_steps=steps("relearning_steps"),
        ).clamped()
