"""
Live review sessions.

Components:
- ReviewEngine: session controller (queues, phases, undo, leeches)
- match_command: speech-to-command matcher
- EventChannel: typed event stream consumed by presentation layers
"""

from .cards import StudyCard, render_card
from .clock import Clock, SystemClock
from .commands import Command, Phase, match_command
from .engine import ReviewEngine, SessionConfig, UndoSnapshot
from .events import EventChannel, ReviewEvent
from .ports import CardStore, DueBatch, DueFilters, Explainer, SpeechOutput, TranscriptEvent, TranscriptSource
from .queues import LearningQueue, ReviewQueue, pick_next
from .telemetry import SessionStats

__all__ = [
    # Engine
    "ReviewEngine",
    "SessionConfig",
    "UndoSnapshot",
    "SessionStats",
    # Commands
    "Command",
    "Phase",
    "match_command",
    # Cards and queues
    "StudyCard",
    "render_card",
    "LearningQueue",
    "ReviewQueue",
    "pick_next",
    # Events
    "EventChannel",
    "ReviewEvent",
    # Collaborators
    "CardStore",
    "Clock",
    "DueBatch",
    "DueFilters",
    "Explainer",
    "SpeechOutput",
    "SystemClock",
    "TranscriptEvent",
    "TranscriptSource",
]
