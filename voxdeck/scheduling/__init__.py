"""
Scheduling: FSRS interval model, learning steps and leech detection.

Components:
- FSRSScheduler: forgetting-curve interval model
- StepScheduler: learning/relearning steps layered on the interval model
- detect_leech: lapse threshold check
"""

from .fsrs import FSRSScheduler
from .leech import detect_leech, is_leech
from .models import (
    CardState,
    DeckSettings,
    Grade,
    MemoryState,
    SchedulerConfig,
    parse_steps,
)
from .steps import StepScheduler, hard_delay

__all__ = [
    # Data model
    "CardState",
    "DeckSettings",
    "Grade",
    "MemoryState",
    "SchedulerConfig",
    "parse_steps",
    # Scheduling
    "FSRSScheduler",
    "StepScheduler",
    "hard_delay",
    # Leeches
    "detect_leech",
    "is_leech",
]
