"""
Leech detection.

A leech is a card that keeps lapsing. Once its lapse count reaches the
deck's threshold it is suspended; suspension is a flag stored beside
the memory state, not a scheduling state.
"""

from __future__ import annotations

from .models import Grade, MemoryState


def is_leech(updated_lapses: int, threshold: int) -> bool:
    """True when the lapse count has reached the threshold."""
    return updated_lapses >= threshold


def detect_leech(
    after: MemoryState,
    grade: Grade,
    threshold: int,
) -> bool:
    """
    Check a single grading event.

    Only Again grades are checked. A card already at the threshold (for
    example one unsuspended by hand) is caught again on its next Again,
    even inside relearning steps where no lapse is added.
    """
    if grade is not Grade.AGAIN:
        return False
    return is_leech(after.lapses, threshold)
