"""
Local persistence.
"""

from .state_store import DeckRecord, SessionRecord, SqliteCardStore, day_start

__all__ = [
    "DeckRecord",
    "SessionRecord",
    "SqliteCardStore",
    "day_start",
]
