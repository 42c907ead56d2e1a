"""
Step Scheduler - learning and relearning steps on top of FSRS.

Pure forgetting-curve scheduling yields same-day or multi-hour raw
intervals during initial acquisition. Fixed short delays ("steps") are
used instead until a card graduates, which is what lets a live session
show a just-learned card again within minutes.

Transitions (steps = learning steps for NEW/LEARNING, relearning steps
for RELEARNING, idx = current step index):

    Again  -> idx 0, due in steps[0]
    Hard   -> idx unchanged, due in hard_delay(steps, idx)
    Good   -> idx + 1 while steps remain, otherwise graduate to REVIEW
    Easy   -> graduate immediately

REVIEW cards use the interval model directly, except that Again enters
RELEARNING when relearning steps exist. Empty step lists fall through
to the interval model.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger

from .fsrs import FSRSScheduler
from .models import CardState, Grade, MemoryState, SchedulerConfig

MINUTES_PER_DAY = 1440.0


def hard_delay(steps: tuple[float, ...], index: int) -> float:
    """
    Delay in minutes for a Hard grade at step ``index``.

    On the first step this is the average of the first two steps (or
    1.5x a single step, capped one day above it). Later steps replay
    their own delay unchanged.
    """
    if index > 0:
        return steps[index]
    if len(steps) >= 2:
        return (steps[0] + steps[1]) / 2
    return min(steps[0] * 1.5, steps[0] + MINUTES_PER_DAY)


class StepScheduler:
    """Wraps an interval model with learning/relearning step sequences."""

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        model: FSRSScheduler | None = None,
    ):
        self.config = (config or SchedulerConfig()).clamped()
        self.model = model or FSRSScheduler(self.config)

    def schedule(self, memory: MemoryState, grade: Grade, now: datetime) -> MemoryState:
        """
        Apply one grade.

        The interval model runs exactly once per grade so stability,
        difficulty, reps and lapses stay current while stepping; step
        logic only overrides state, step index and due time.
        """
        modelled = self.model.schedule(memory, grade, now)
        state = memory.state

        if state is CardState.NEW or state is CardState.LEARNING:
            steps = self.config.learning_steps
            if not steps:
                return modelled
            return self._walk(memory, modelled, grade, now, steps, CardState.LEARNING)

        if state is CardState.REVIEW:
            relearning = self.config.relearning_steps
            if grade is Grade.AGAIN and relearning:
                return self._step(modelled, CardState.RELEARNING, 0, relearning[0], now)
            return modelled

        if state is CardState.RELEARNING:
            steps = self.config.relearning_steps
            if not steps:
                return modelled
            return self._walk(memory, modelled, grade, now, steps, CardState.RELEARNING)

        raise ValueError(f"Unhandled card state: {state!r}")

    def preview(self, memory: MemoryState, now: datetime) -> dict[Grade, MemoryState]:
        """Successor states for every grade."""
        return {grade: self.schedule(memory, grade, now) for grade in Grade}

    def _walk(
        self,
        memory: MemoryState,
        modelled: MemoryState,
        grade: Grade,
        now: datetime,
        steps: tuple[float, ...],
        stepping: CardState,
    ) -> MemoryState:
        # Step lists can shrink after a settings change
        index = 0 if memory.state is CardState.NEW else min(memory.step_index, len(steps) - 1)

        if grade is Grade.AGAIN:
            return self._step(modelled, stepping, 0, steps[0], now)
        if grade is Grade.HARD:
            return self._step(modelled, stepping, index, hard_delay(steps, index), now)
        if grade is Grade.GOOD:
            if index + 1 < len(steps):
                return self._step(modelled, stepping, index + 1, steps[index + 1], now)
            logger.debug("Graduating after step {} with {}d interval", index, modelled.scheduled_days)
            return modelled
        if grade is Grade.EASY:
            return modelled

        raise ValueError(f"Unhandled grade: {grade!r}")

    @staticmethod
    def _step(
        modelled: MemoryState,
        state: CardState,
        index: int,
        minutes: float,
        now: datetime,
    ) -> MemoryState:
        return modelled.evolve(
            state=state,
            step_index=index,
            due=now + timedelta(minutes=minutes),
            scheduled_days=minutes / MINUTES_PER_DAY,
        )
