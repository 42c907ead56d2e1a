"""
FSRS Interval Model - long-term memory scheduling.

Implements the FSRS-5 forgetting-curve model:
1. Stability (S) - days until recall probability decays to 90%
2. Difficulty (D) - inherent complexity of the card (1-10)
3. Retrievability (R) - current probability of recall

This model knows nothing about learning steps. Every grade produces a
REVIEW-state successor with a whole-day interval; the step scheduler in
``voxdeck.scheduling.steps`` layers short fixed delays on top of it.

Based on:
- Ye et al., "A Stochastic Shortest Path Algorithm for Optimizing
  Spaced Repetition Scheduling"
- open-spaced-repetition default FSRS-5 parameters
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from .models import CardState, Grade, MemoryState, SchedulerConfig

# =============================================================================
# FSRS-5 CONSTANTS
# =============================================================================

FSRS_WEIGHTS: tuple[float, ...] = (
    0.40255,   # w0: initial stability for Again
    1.18385,   # w1: initial stability for Hard
    3.173,     # w2: initial stability for Good
    15.69105,  # w3: initial stability for Easy
    7.1949,    # w4: initial difficulty base
    0.5345,    # w5: initial difficulty grade modifier
    1.4604,    # w6: difficulty delta
    0.0046,    # w7: difficulty mean reversion
    1.54575,   # w8: recall stability base
    0.1192,    # w9: recall stability saturation
    1.01925,   # w10: retrievability influence on recall stability
    1.9395,    # w11: forget stability base
    0.11,      # w12: forget difficulty influence
    0.29605,   # w13: forget stability influence
    2.2698,    # w14: forget retrievability influence
    0.2315,    # w15: hard penalty
    2.9898,    # w16: easy bonus
    0.51655,   # w17: same-day stability base
    0.6621,    # w18: same-day grade offset
)

DECAY = -0.5
FACTOR = 0.9 ** (1 / DECAY) - 1  # 19/81, so that R(S) == 0.9

MIN_STABILITY = 0.01
MAX_STABILITY = 36500.0
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0

SECONDS_PER_DAY = 86400.0


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class FSRSScheduler:
    """
    FSRS-5 interval model.

    Pure: ``schedule`` never mutates its input and never reads the clock.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        weights: tuple[float, ...] = FSRS_WEIGHTS,
    ):
        self.config = (config or SchedulerConfig()).clamped()
        self.w = weights

    # =========================================================================
    # Public API
    # =========================================================================

    def schedule(self, memory: MemoryState, grade: Grade, now: datetime) -> MemoryState:
        """
        Compute the successor memory state for one grade.

        Args:
            memory: Current memory state (reps == 0 means never graded)
            grade: Learner's grade
            now: Review instant (timezone-aware)

        Returns:
            New MemoryState in REVIEW state, due a whole number of days from now
        """
        return self.preview(memory, now)[grade]

    def preview(self, memory: MemoryState, now: datetime) -> dict[Grade, MemoryState]:
        """
        Successor states for all four grades at once.

        Intervals are forced into Again <= Hard < Good < Easy order before
        capping at the maximum interval, so a stronger grade never yields a
        shorter interval.
        """
        if memory.reps == 0:
            elapsed = 0.0
            stabilities = {g: self.initial_stability(g) for g in Grade}
            difficulties = {g: self.initial_difficulty(g) for g in Grade}
            base = MemoryState.new(now)
        else:
            # Persisted values may predate validation
            s = _clamp(memory.stability, MIN_STABILITY, MAX_STABILITY)
            d = _clamp(memory.difficulty, MIN_DIFFICULTY, MAX_DIFFICULTY)
            elapsed = self.elapsed_days(memory, now)
            r = self.retrievability(s, elapsed)
            difficulties = {g: self.next_difficulty(d, g) for g in Grade}
            stabilities = {}
            for g in Grade:
                if elapsed < 1.0:
                    stabilities[g] = self.short_term_stability(s, g)
                elif g is Grade.AGAIN:
                    stabilities[g] = self.forget_stability(d, s, r)
                else:
                    stabilities[g] = self.recall_stability(d, s, r, g)
            base = memory

        intervals = self._ordered_intervals(stabilities)
        lapsed = memory.reps > 0 and memory.state is CardState.REVIEW

        return {
            g: MemoryState(
                due=now + timedelta(days=intervals[g]),
                state=CardState.REVIEW,
                stability=stabilities[g],
                difficulty=difficulties[g],
                elapsed_days=elapsed,
                scheduled_days=float(intervals[g]),
                reps=base.reps + 1,
                lapses=base.lapses + (1 if g is Grade.AGAIN and lapsed else 0),
                last_review=now,
                step_index=0,
            )
            for g in Grade
        }

    # =========================================================================
    # Forgetting Curve
    # =========================================================================

    @staticmethod
    def elapsed_days(memory: MemoryState, now: datetime) -> float:
        """Days since the last review (0 when never reviewed)."""
        if memory.last_review is None:
            return 0.0
        return max(0.0, (now - memory.last_review).total_seconds() / SECONDS_PER_DAY)

    @staticmethod
    def retrievability(stability: float, elapsed_days: float) -> float:
        """
        Probability of recall after ``elapsed_days``.

        Formula: R = (1 + FACTOR * t / S) ^ DECAY
        """
        if stability <= 0:
            return 0.0
        return math.pow(1 + FACTOR * elapsed_days / stability, DECAY)

    def next_interval(self, stability: float) -> int:
        """
        Whole days until recall probability falls to the requested retention.

        Formula: I = S / FACTOR * (R_target ^ (1 / DECAY) - 1), rounded down.
        """
        retention = self.config.request_retention
        raw = stability / FACTOR * (math.pow(retention, 1 / DECAY) - 1)
        return int(_clamp(math.floor(raw), 1, self.config.maximum_interval))

    def _ordered_intervals(self, stabilities: dict[Grade, float]) -> dict[Grade, int]:
        again = self.next_interval(stabilities[Grade.AGAIN])
        hard = self.next_interval(stabilities[Grade.HARD])
        good = self.next_interval(stabilities[Grade.GOOD])
        easy = self.next_interval(stabilities[Grade.EASY])

        again = min(again, hard)
        hard = max(hard, again + 1)
        good = max(good, hard + 1)
        easy = max(easy, good + 1)

        cap = self.config.maximum_interval
        return {
            Grade.AGAIN: min(again, cap),
            Grade.HARD: min(hard, cap),
            Grade.GOOD: min(good, cap),
            Grade.EASY: min(easy, cap),
        }

    # =========================================================================
    # Stability & Difficulty
    # =========================================================================

    def initial_stability(self, grade: Grade) -> float:
        return max(MIN_STABILITY, self.w[grade - 1])

    def initial_difficulty(self, grade: Grade) -> float:
        """D0(G) = w4 - exp(w5 * (G - 1)) + 1"""
        d = self.w[4] - math.exp(self.w[5] * (grade - 1)) + 1
        return _clamp(d, MIN_DIFFICULTY, MAX_DIFFICULTY)

    def next_difficulty(self, d: float, grade: Grade) -> float:
        """Linear-damped difficulty update with mean reversion toward D0(Easy)."""
        delta = -self.w[6] * (grade - 3)
        damped = d + delta * (10 - d) / 9
        reverted = self.w[7] * self.initial_difficulty(Grade.EASY) + (1 - self.w[7]) * damped
        return _clamp(reverted, MIN_DIFFICULTY, MAX_DIFFICULTY)

    def recall_stability(self, d: float, s: float, r: float, grade: Grade) -> float:
        """Stability after a successful recall (Hard, Good, Easy)."""
        hard_penalty = self.w[15] if grade is Grade.HARD else 1.0
        easy_bonus = self.w[16] if grade is Grade.EASY else 1.0
        growth = (
            math.exp(self.w[8])
            * (11 - d)
            * math.pow(s, -self.w[9])
            * (math.exp((1 - r) * self.w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )
        return _clamp(s * (1 + growth), MIN_STABILITY, MAX_STABILITY)

    def forget_stability(self, d: float, s: float, r: float) -> float:
        """Stability after a lapse. Never exceeds the pre-lapse stability."""
        forgotten = (
            self.w[11]
            * math.pow(d, -self.w[12])
            * (math.pow(s + 1, self.w[13]) - 1)
            * math.exp((1 - r) * self.w[14])
        )
        return _clamp(min(forgotten, s), MIN_STABILITY, MAX_STABILITY)

    def short_term_stability(self, s: float, grade: Grade) -> float:
        """Same-day review: S' = S * exp(w17 * (G - 3 + w18))"""
        return _clamp(
            s * math.exp(self.w[17] * (grade - 3 + self.w[18])),
            MIN_STABILITY,
            MAX_STABILITY,
        )
