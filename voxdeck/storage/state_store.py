"""
SQLite Card Store for voxdeck.

Provides local persistence for:
- Decks, notes and the cards generated from them
- Per-card memory state and the suspended flag
- Review log with pre-grade snapshots (undo, daily caps)
- Per-deck scheduling settings
- Session history

Database location: ~/.voxdeck/voxdeck.db
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from voxdeck.errors import CardNotFoundError, StoreError
from voxdeck.review.cards import StudyCard, cloze_ordinals
from voxdeck.review.ports import DueBatch, DueFilters
from voxdeck.review.telemetry import SessionStats
from voxdeck.scheduling.models import (
    CardState,
    DeckSettings,
    Grade,
    MemoryState,
    utc_now,
)

MAX_FETCH_LIMIT = 200
DAY_ROLLOVER_HOUR = 4  # UTC

_CRAM_STATES = {
    "new": (CardState.NEW,),
    "learning": (CardState.LEARNING, CardState.RELEARNING),
    "review": (CardState.REVIEW,),
}


def to_timestamp(instant: datetime) -> str:
    """Fixed-width UTC timestamp; sorts lexicographically in time order."""
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def day_start(now: datetime) -> datetime:
    """Start of the study day containing ``now`` (rolls over at 04:00 UTC)."""
    now = now.astimezone(timezone.utc)
    boundary = now.replace(hour=DAY_ROLLOVER_HOUR, minute=0, second=0, microsecond=0)
    if now < boundary:
        boundary -= timedelta(days=1)
    return boundary


def _new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class DeckRecord:
    id: str
    name: str
    created_at: str


@dataclass
class SessionRecord:
    """A finished review session."""

    id: int
    deck_id: str
    started_at: str
    ended_at: str | None
    cards_reviewed: int
    ratings: dict[str, int]
    duration_seconds: float


# =============================================================================
# Card Store
# =============================================================================


class SqliteCardStore:
    """
    SQLite-backed card store.

    The async methods (fetch_due, persist_grade, revert_grade,
    set_suspended) are the session engine's storage port; the plain
    methods serve the CLI.
    """

    DEFAULT_DB_PATH = Path.home() / ".voxdeck" / "voxdeck.db"

    def __init__(
        self,
        db_path: Path | str | None = None,
        default_settings: DeckSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the card store.

        Args:
            db_path: Database file, or ":memory:" (defaults to ~/.voxdeck/voxdeck.db)
            default_settings: Settings for decks that have none stored
            clock: Source of the current time
        """
        if db_path == ":memory:":
            self.db_path: Path | str = db_path
        else:
            self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.default_settings = (default_settings or DeckSettings()).clamped()
        self.clock = clock

        self._conn: sqlite3.Connection | None = None
        self._port_lock = threading.Lock()
        self._init_schema()

        logger.debug("SqliteCardStore initialized at {}", self.db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self.conn:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS decks (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
                    card_type TEXT NOT NULL DEFAULT 'basic',
                    fields TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS cards (
                    id TEXT PRIMARY KEY,
                    note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
                    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
                    ordinal INTEGER NOT NULL DEFAULT 1,
                    due TEXT NOT NULL,
                    state INTEGER NOT NULL DEFAULT 0,
                    stability REAL NOT NULL DEFAULT 0,
                    difficulty REAL NOT NULL DEFAULT 0,
                    elapsed_days REAL NOT NULL DEFAULT 0,
                    scheduled_days REAL NOT NULL DEFAULT 0,
                    reps INTEGER NOT NULL DEFAULT 0,
                    lapses INTEGER NOT NULL DEFAULT 0,
                    last_review TEXT,
                    step_index INTEGER NOT NULL DEFAULT 0,
                    suspended INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS deck_settings (
                    deck_id TEXT PRIMARY KEY REFERENCES decks(id) ON DELETE CASCADE,
                    settings TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
                    deck_id TEXT NOT NULL,
                    rating TEXT NOT NULL,
                    duration_ms INTEGER,
                    created_at TEXT NOT NULL,
                    prev_state INTEGER NOT NULL,
                    prev_memory TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS session_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    deck_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    cards_reviewed INTEGER NOT NULL DEFAULT 0,
                    ratings TEXT NOT NULL DEFAULT '{}',
                    duration_seconds REAL NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_cards_deck_due ON cards(deck_id, state, due);
                CREATE INDEX IF NOT EXISTS idx_reviews_card ON reviews(card_id);
                CREATE INDEX IF NOT EXISTS idx_reviews_deck_day ON reviews(deck_id, created_at);
            """)

    # =========================================================================
    # Decks
    # =========================================================================

    def add_deck(self, name: str) -> DeckRecord:
        name = name.strip()
        if not name:
            raise ValueError("Deck name must not be empty")
        record = DeckRecord(id=_new_id(), name=name, created_at=to_timestamp(self.clock()))
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO decks (id, name, created_at) VALUES (?, ?, ?)",
                    (record.id, record.name, record.created_at),
                )
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"Deck already exists: {name}") from exc
        logger.info("Created deck {} ({})", name, record.id)
        return record

    def get_deck(self, key: str) -> DeckRecord:
        """Look a deck up by id or by name."""
        row = self.conn.execute(
            "SELECT id, name, created_at FROM decks WHERE id = ? OR name = ?",
            (key, key),
        ).fetchone()
        if row is None:
            raise CardNotFoundError(f"Deck not found: {key}")
        return DeckRecord(id=row["id"], name=row["name"], created_at=row["created_at"])

    def list_decks(self) -> list[dict[str, Any]]:
        """Every deck with its card counts."""
        rows = self.conn.execute("SELECT id FROM decks ORDER BY name").fetchall()
        return [self.deck_stats(row["id"]) for row in rows]

    def reset_deck(self, deck_id: str) -> int:
        """
        Forget all progress in a deck.

        Deletes the deck's review log and makes every card New, due now
        and unsuspended. Returns the number of cards reset.
        """
        deck = self.get_deck(deck_id)
        memory = MemoryState.new(self.clock())
        with self.conn:
            self.conn.execute("DELETE FROM reviews WHERE deck_id = ?", (deck.id,))
            cursor = self.conn.execute(
                """
                UPDATE cards SET
                    due = ?, state = ?, stability = ?, difficulty = ?, elapsed_days = ?,
                    scheduled_days = ?, reps = ?, lapses = ?, last_review = ?, step_index = ?,
                    suspended = 0
                WHERE deck_id = ?
                """,
                (*_memory_values(memory), deck.id),
            )
        logger.info("Reset {} card(s) in deck {}", cursor.rowcount, deck.name)
        return cursor.rowcount

    def delete_deck(self, deck_id: str) -> None:
        """Delete a deck with its notes, cards, reviews, settings and sessions."""
        deck = self.get_deck(deck_id)
        with self.conn:
            self.conn.execute("DELETE FROM reviews WHERE deck_id = ?", (deck.id,))
            self.conn.execute("DELETE FROM cards WHERE deck_id = ?", (deck.id,))
            self.conn.execute("DELETE FROM notes WHERE deck_id = ?", (deck.id,))
            self.conn.execute("DELETE FROM deck_settings WHERE deck_id = ?", (deck.id,))
            self.conn.execute("DELETE FROM session_history WHERE deck_id = ?", (deck.id,))
            self.conn.execute("DELETE FROM decks WHERE id = ?", (deck.id,))
        logger.info("Deleted deck {} ({})", deck.name, deck.id)

    def get_deck_settings(self, deck_id: str) -> DeckSettings:
        row = self.conn.execute(
            "SELECT settings FROM deck_settings WHERE deck_id = ?", (deck_id,)
        ).fetchone()
        if row is None:
            return self.default_settings
        try:
            data = json.loads(row["settings"])
        except ValueError:
            logger.warning("Ignoring unreadable settings for deck {}", deck_id)
            return self.default_settings
        return DeckSettings.from_dict(data, self.default_settings)

    def save_deck_settings(self, deck_id: str, settings: DeckSettings) -> DeckSettings:
        """Store settings for a deck after clamping them."""
        deck = self.get_deck(deck_id)
        settings = settings.clamped()
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO deck_settings (deck_id, settings) VALUES (?, ?)
                ON CONFLICT(deck_id) DO UPDATE SET settings = excluded.settings
                """,
                (deck.id, json.dumps(settings.to_dict())),
            )
        return settings

    # =========================================================================
    # Notes and Cards
    # =========================================================================

    def add_note(
        self,
        deck_id: str,
        front: str,
        back: str | None = None,
        card_type: str = "basic",
        tags: list[str] | None = None,
    ) -> list[str]:
        """
        Add a note and generate its cards.

        Basic notes produce one card; cloze notes produce one card per
        distinct deletion number.

        Returns:
            Ids of the created cards
        """
        deck = self.get_deck(deck_id)
        if card_type == "cloze":
            ordinals = cloze_ordinals(front)
            if not ordinals:
                raise ValueError("Cloze note has no {{cN::...}} deletions")
            fields = [{"name": "Text", "value": front}, {"name": "Extra", "value": back or ""}]
        elif card_type == "basic":
            ordinals = [1]
            fields = [{"name": "Front", "value": front}]
            if back is not None:
                fields.append({"name": "Back", "value": back})
        else:
            raise ValueError(f"Unknown card type: {card_type!r}")

        now = to_timestamp(self.clock())
        note_id = _new_id()
        card_ids = [_new_id() for _ in ordinals]
        with self.conn:
            self.conn.execute(
                "INSERT INTO notes (id, deck_id, card_type, fields, tags, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (note_id, deck.id, card_type, json.dumps(fields), " ".join(tags or []), now),
            )
            self.conn.executemany(
                "INSERT INTO cards (id, note_id, deck_id, ordinal, due, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                [(card_id, note_id, deck.id, ordinal, now, now) for card_id, ordinal in zip(card_ids, ordinals)],
            )
        logger.debug("Added {} note {} with {} card(s)", card_type, note_id, len(card_ids))
        return card_ids

    def get_card(self, card_id: str) -> StudyCard:
        row = self.conn.execute(
            f"{_CARD_SELECT} WHERE c.id = ?", (card_id,)
        ).fetchone()
        if row is None:
            raise CardNotFoundError(f"Card not found: {card_id}")
        return StudyCard.from_row(dict(row))

    def is_suspended(self, card_id: str) -> bool:
        row = self.conn.execute("SELECT suspended FROM cards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise CardNotFoundError(f"Card not found: {card_id}")
        return bool(row["suspended"])

    def reset_card(self, card_id: str) -> MemoryState:
        """Forget all progress on a card; it becomes New and due now."""
        memory = MemoryState.new(self.clock())
        with self.conn:
            self._write_memory(card_id, memory)
        logger.info("Reset card {}", card_id)
        return memory

    def update_note(
        self,
        card_id: str,
        front: str | None = None,
        back: str | None = None,
        tags: list[str] | None = None,
    ) -> list[str]:
        """
        Edit the note behind a card.

        ``front`` and ``back`` map to Text and Extra on cloze notes. New
        deletion numbers in edited cloze text get their own cards; study
        progress on existing cards is kept.

        Returns:
            Ids of cards created by the edit
        """
        row = self.conn.execute(
            """
            SELECT n.id, n.deck_id, n.card_type, n.fields FROM notes n
            JOIN cards c ON c.note_id = n.id WHERE c.id = ?
            """,
            (card_id,),
        ).fetchone()
        if row is None:
            raise CardNotFoundError(f"Card not found: {card_id}")

        cloze = row["card_type"] == "cloze"
        names = ("Text", "Extra") if cloze else ("Front", "Back")
        fields = {field["name"]: field["value"] for field in json.loads(row["fields"])}
        if front is not None:
            fields[names[0]] = front
        if back is not None:
            fields[names[1]] = back
        if not fields.get(names[0], "").strip():
            raise ValueError(f"{names[0]} must not be empty")

        new_ordinals: list[int] = []
        if cloze:
            ordinals = cloze_ordinals(fields[names[0]])
            if not ordinals:
                raise ValueError("Cloze note has no {{cN::...}} deletions")
            existing = {
                r["ordinal"]
                for r in self.conn.execute("SELECT ordinal FROM cards WHERE note_id = ?", (row["id"],))
            }
            new_ordinals = [ordinal for ordinal in ordinals if ordinal not in existing]

        now = to_timestamp(self.clock())
        card_ids = [_new_id() for _ in new_ordinals]
        with self.conn:
            self.conn.execute(
                "UPDATE notes SET fields = ? WHERE id = ?",
                (json.dumps([{"name": name, "value": value} for name, value in fields.items()]), row["id"]),
            )
            if tags is not None:
                self.conn.execute("UPDATE notes SET tags = ? WHERE id = ?", (" ".join(tags), row["id"]))
            self.conn.executemany(
                "INSERT INTO cards (id, note_id, deck_id, ordinal, due, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                [(new_id, row["id"], row["deck_id"], ordinal, now, now) for new_id, ordinal in zip(card_ids, new_ordinals)],
            )
        logger.info("Updated note {} ({} new card(s))", row["id"], len(card_ids))
        return card_ids

    def mark_suspended(self, card_id: str, suspended: bool) -> None:
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE cards SET suspended = ? WHERE id = ?", (int(suspended), card_id)
            )
        if cursor.rowcount == 0:
            raise CardNotFoundError(f"Card not found: {card_id}")
        logger.info("Card {} {}", card_id, "suspended" if suspended else "unsuspended")

    def _write_memory(self, card_id: str, memory: MemoryState, **extra: Any) -> None:
        assignments = ", ".join(f"{column} = ?" for column in extra)
        sql = """
            UPDATE cards SET
                due = ?, state = ?, stability = ?, difficulty = ?, elapsed_days = ?,
                scheduled_days = ?, reps = ?, lapses = ?, last_review = ?, step_index = ?
        """
        if assignments:
            sql += ", " + assignments
        sql += " WHERE id = ?"
        cursor = self.conn.execute(sql, (*_memory_values(memory), *extra.values(), card_id))
        if cursor.rowcount == 0:
            raise CardNotFoundError(f"Card not found: {card_id}")

    # =========================================================================
    # Due Cards
    # =========================================================================

    def load_due(self, deck_id: str, limit: int = 50, filters: DueFilters | None = None) -> DueBatch:
        """
        Select the cards for a session.

        Normal mode returns, in order: learning/relearning cards due now
        (uncapped), review cards due now (daily review cap), new cards
        (daily new-card cap). Cram mode ignores due dates and caps and
        orders by fewest repetitions, then randomly.
        """
        filters = filters or DueFilters()
        deck = self.get_deck(deck_id)
        settings = self.get_deck_settings(deck.id)
        limit = max(1, min(MAX_FETCH_LIMIT, int(limit)))
        now = self.clock()

        tag_sql, tag_params = _tag_clause(filters.tags)
        base = f"{_CARD_SELECT} WHERE c.deck_id = ? AND c.suspended = 0{tag_sql}"

        if filters.cram:
            params: list[Any] = [deck.id, *tag_params]
            sql = base
            states = _CRAM_STATES.get(filters.cram_state or "")
            if states:
                sql += f" AND c.state IN ({', '.join('?' for _ in states)})"
                params.extend(int(state) for state in states)
            sql += " ORDER BY c.reps ASC, RANDOM() LIMIT ?"
            rows = self.conn.execute(sql, (*params, limit)).fetchall()
        else:
            new_done, review_done = self._graded_today(deck.id, now)
            new_left = max(0, settings.new_cards_per_day - new_done)
            review_left = max(0, settings.max_reviews_per_day - review_done)
            stamp = to_timestamp(now)
            params = [deck.id, *tag_params, stamp]

            rows = self.conn.execute(
                f"{base} AND c.state IN (1, 3) AND c.due <= ? ORDER BY c.due", params
            ).fetchall()
            rows += self.conn.execute(
                f"{base} AND c.state = 2 AND c.due <= ? ORDER BY c.due LIMIT ?",
                (*params, review_left),
            ).fetchall()
            rows += self.conn.execute(
                f"{base} AND c.state = 0 AND c.due <= ? ORDER BY c.due, c.ordinal LIMIT ?",
                (*params, new_left),
            ).fetchall()
            rows = rows[:limit]

        cards = [StudyCard.from_row(dict(row)) for row in rows]
        logger.debug("Loaded {} due card(s) from deck {}", len(cards), deck.name)
        return DueBatch(deck_id=deck.id, deck_name=deck.name, settings=settings, cards=cards)

    def _graded_today(self, deck_id: str, now: datetime) -> tuple[int, int]:
        """New and review cards graded since the day rollover."""
        row = self.conn.execute(
            """
            SELECT
                COUNT(DISTINCT CASE WHEN prev_state = 0 THEN card_id END) AS new_done,
                SUM(CASE WHEN prev_state = 2 THEN 1 ELSE 0 END) AS review_done
            FROM reviews
            WHERE deck_id = ? AND created_at >= ?
            """,
            (deck_id, to_timestamp(day_start(now))),
        ).fetchone()
        return int(row["new_done"] or 0), int(row["review_done"] or 0)

    # =========================================================================
    # Grading
    # =========================================================================

    def save_grade(
        self,
        card_id: str,
        memory: MemoryState,
        grade: Grade,
        previous: MemoryState,
        duration_ms: int = 0,
    ) -> None:
        """Write a graded memory state and log the review with its pre-grade snapshot."""
        row = self.conn.execute("SELECT deck_id FROM cards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise CardNotFoundError(f"Card not found: {card_id}")
        with self.conn:
            self._write_memory(card_id, memory)
            self.conn.execute(
                """
                INSERT INTO reviews (card_id, deck_id, rating, duration_ms, created_at, prev_state, prev_memory)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    card_id,
                    row["deck_id"],
                    grade.label,
                    duration_ms,
                    to_timestamp(self.clock()),
                    int(previous.state),
                    json.dumps(previous.to_dict()),
                ),
            )

    def restore_grade(self, card_id: str, memory: MemoryState | None = None) -> MemoryState:
        """
        Undo the latest review of a card.

        Restores ``memory`` (or the logged pre-grade snapshot), deletes
        that review and lifts any suspension the grade caused.
        """
        review = self.conn.execute(
            "SELECT id, prev_memory FROM reviews WHERE card_id = ? ORDER BY id DESC LIMIT 1",
            (card_id,),
        ).fetchone()
        if memory is None:
            if review is None:
                raise CardNotFoundError(f"No undoable review for card: {card_id}")
            memory = MemoryState.from_dict(json.loads(review["prev_memory"]))
        with self.conn:
            if review is not None:
                self.conn.execute("DELETE FROM reviews WHERE id = ?", (review["id"],))
            self._write_memory(card_id, memory, suspended=0)
        return memory

    # =========================================================================
    # Session Engine Port
    # =========================================================================

    async def _offload(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking call on a worker thread, one call at a time."""

        def locked() -> Any:
            with self._port_lock:
                return func(*args)

        return await asyncio.to_thread(locked)

    async def fetch_due(self, deck_id: str, limit: int, filters: DueFilters) -> DueBatch:
        try:
            return await self._offload(self.load_due, deck_id, limit, filters)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to load due cards: {exc}") from exc

    async def persist_grade(
        self,
        card_id: str,
        memory: MemoryState,
        *,
        grade: Grade,
        previous: MemoryState,
        duration_ms: int = 0,
    ) -> None:
        try:
            await self._offload(self.save_grade, card_id, memory, grade, previous, duration_ms)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save review: {exc}") from exc

    async def revert_grade(self, card_id: str, memory: MemoryState) -> None:
        try:
            await self._offload(self.restore_grade, card_id, memory)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to revert review: {exc}") from exc

    async def set_suspended(self, card_id: str, suspended: bool) -> None:
        try:
            await self._offload(self.mark_suspended, card_id, suspended)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to update suspension: {exc}") from exc

    # =========================================================================
    # Statistics
    # =========================================================================

    def deck_stats(self, deck_id: str, days: int = 30) -> dict[str, Any]:
        """
        Card counts and recent retention for a deck.

        Returns:
            Dict with per-state counts (suspended cards counted only as
            suspended), ``due_now``, ``reviews_today`` and
            ``retention_rate`` (None without recent review-state grades)
        """
        deck = self.get_deck(deck_id)
        now = self.clock()
        days = max(1, min(365, days))
        counts = self.conn.execute(
            """
            SELECT
                SUM(CASE WHEN state = 0 AND suspended = 0 THEN 1 ELSE 0 END) AS new,
                SUM(CASE WHEN state = 1 AND suspended = 0 THEN 1 ELSE 0 END) AS learning,
                SUM(CASE WHEN state = 2 AND suspended = 0 THEN 1 ELSE 0 END) AS review,
                SUM(CASE WHEN state = 3 AND suspended = 0 THEN 1 ELSE 0 END) AS relearning,
                SUM(CASE WHEN suspended = 1 THEN 1 ELSE 0 END) AS suspended,
                SUM(CASE WHEN suspended = 0 AND due <= ? THEN 1 ELSE 0 END) AS due_now,
                COUNT(*) AS total
            FROM cards WHERE deck_id = ?
            """,
            (to_timestamp(now), deck.id),
        ).fetchone()
        reviews = self.conn.execute(
            """
            SELECT
                SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS today,
                SUM(CASE WHEN prev_state = 2 THEN 1 ELSE 0 END) AS mature,
                SUM(CASE WHEN prev_state = 2 AND rating != 'again' THEN 1 ELSE 0 END) AS passed
            FROM reviews
            WHERE deck_id = ? AND created_at >= ?
            """,
            (to_timestamp(day_start(now)), deck.id, to_timestamp(now - timedelta(days=days))),
        ).fetchone()

        mature = int(reviews["mature"] or 0)
        stats = {key: int(counts[key] or 0) for key in counts.keys()}
        stats.update(
            id=deck.id,
            name=deck.name,
            reviews_today=int(reviews["today"] or 0),
            retention_rate=(int(reviews["passed"] or 0) / mature) if mature else None,
        )
        return stats

    def record_session(self, deck_id: str, stats: SessionStats) -> int:
        """Store a finished session; returns its row id."""
        summary = stats.to_dict()
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO session_history
                    (deck_id, started_at, ended_at, cards_reviewed, ratings, duration_seconds)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    deck_id,
                    to_timestamp(stats.started_at or self.clock()),
                    to_timestamp(stats.ended_at) if stats.ended_at else None,
                    summary["cards_reviewed"],
                    json.dumps(summary["ratings"]),
                    summary["duration_seconds"],
                ),
            )
        return int(cursor.lastrowid)

    def session_history(self, deck_id: str | None = None, limit: int = 10) -> list[SessionRecord]:
        """Most recent sessions first."""
        sql = "SELECT * FROM session_history"
        params: tuple = ()
        if deck_id is not None:
            sql += " WHERE deck_id = ?"
            params = (self.get_deck(deck_id).id,)
        sql += " ORDER BY id DESC LIMIT ?"
        rows = self.conn.execute(sql, (*params, limit)).fetchall()
        return [
            SessionRecord(
                id=row["id"],
                deck_id=row["deck_id"],
                started_at=row["started_at"],
                ended_at=row["ended_at"],
                cards_reviewed=row["cards_reviewed"],
                ratings=json.loads(row["ratings"]),
                duration_seconds=row["duration_seconds"],
            )
            for row in rows
        ]


# =============================================================================
# Helpers
# =============================================================================

_CARD_SELECT = """
    SELECT c.id, c.note_id, c.deck_id, c.ordinal, c.due, c.state, c.stability,
           c.difficulty, c.elapsed_days, c.scheduled_days, c.reps, c.lapses,
           c.last_review, c.step_index, c.suspended, n.card_type, n.fields, n.tags
    FROM cards c
    JOIN notes n ON n.id = c.note_id
"""


def _memory_values(memory: MemoryState) -> tuple:
    return (
        to_timestamp(memory.due),
        int(memory.state),
        memory.stability,
        memory.difficulty,
        memory.elapsed_days,
        memory.scheduled_days,
        memory.reps,
        memory.lapses,
        to_timestamp(memory.last_review) if memory.last_review else None,
        memory.step_index,
    )


def _tag_clause(tags: tuple[str, ...]) -> tuple[str, list[str]]:
    """SQL matching notes carrying any of ``tags`` as a whole tag."""
    tags = tuple(tag.strip() for tag in tags if tag.strip())
    if not tags:
        return "", []
    conditions = " OR ".join("(' ' || n.tags || ' ') LIKE ?" for _ in tags)
    return f" AND ({conditions})", [f"% {tag} %" for tag in tags]
