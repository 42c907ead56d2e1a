"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests,
including in-memory stand-ins for every collaborator of the review engine.
"""
import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from voxdeck.errors import ExplainError, StoreError  # noqa: E402
from voxdeck.review.cards import StudyCard  # noqa: E402
from voxdeck.review.ports import DueBatch, DueFilters, TranscriptEvent  # noqa: E402
from voxdeck.scheduling.models import CardState, DeckSettings, MemoryState  # noqa: E402

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (local SQLite store)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Collaborator Fakes
# =============================================================================


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = NOW):
        self._now = start
        self._sleepers: list = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        deadline = self._now + timedelta(seconds=max(0.0, seconds))
        if deadline <= self._now:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((deadline, future))
        try:
            await future
        finally:
            self._sleepers = [entry for entry in self._sleepers if entry[1] is not future]

    async def advance(self, seconds: float) -> None:
        # Freshly created timer tasks must register before time moves
        await settle()
        self._now += timedelta(seconds=seconds)
        for deadline, future in list(self._sleepers):
            if deadline <= self._now and not future.done():
                future.set_result(None)
        await settle()


class FakeSpeech:
    """Records spoken text; with ``hold`` set, speech never finishes on its own."""

    def __init__(self, hold: bool = False):
        self.hold = hold
        self.spoken: list[str] = []
        self.cancelled = 0
        self.stops = 0
        self._last = ""

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        self._last = text
        try:
            if self.hold:
                await asyncio.Event().wait()
            await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

    def stop(self) -> None:
        self.stops += 1

    def last_spoken_text(self) -> str:
        return self._last


class FakeStore:
    """In-memory card store."""

    def __init__(self, cards=(), settings: DeckSettings | None = None, deck_name: str = "Test Deck"):
        self.cards = list(cards)
        self.settings = settings or DeckSettings()
        self.deck_name = deck_name
        self.persisted: list = []
        self.reverted: list = []
        self.suspended: dict[str, bool] = {}
        self.fetch_calls: list = []
        self.fail_fetch = False
        self.fail_persist = False
        self.hang_persist = False

    async def fetch_due(self, deck_id: str, limit: int, filters: DueFilters) -> DueBatch:
        self.fetch_calls.append((deck_id, limit, filters))
        if self.fail_fetch:
            raise StoreError("fetch failed")
        return DueBatch(deck_id=deck_id, deck_name=self.deck_name, settings=self.settings, cards=list(self.cards[:limit]))

    async def persist_grade(self, card_id, memory, *, grade, previous, duration_ms=0) -> None:
        if self.hang_persist:
            await asyncio.Event().wait()
        if self.fail_persist:
            raise StoreError("persist failed")
        self.persisted.append((card_id, memory, grade, previous))

    async def revert_grade(self, card_id, memory) -> None:
        self.reverted.append((card_id, memory))
        self.suspended.pop(card_id, None)

    async def set_suspended(self, card_id, suspended) -> None:
        self.suspended[card_id] = suspended


class FakeExplainer:
    def __init__(self, answer: str = "Because of reasons.", fail: bool = False):
        self.answer = answer
        self.fail = fail
        self.calls: list = []

    async def explain(self, front: str, back: str) -> str:
        self.calls.append((front, back))
        if self.fail:
            raise ExplainError("no explanation")
        return self.answer


class FakeTranscripts:
    """Transcript source replaying a fixed list of utterances."""

    def __init__(self, texts=()):
        self.texts = list(texts)
        self.paused = False
        self.stopped = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for text in self.texts:
            if self.stopped:
                return
            await asyncio.sleep(0)
            yield TranscriptEvent(text=text, is_final=True)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def stop(self) -> None:
        self.stopped = True


def make_card(card_id: str, note_id: str | None = None, memory: MemoryState | None = None, **kwargs) -> StudyCard:
    """A rendered card with a New memory state unless one is given."""
    return StudyCard(
        id=card_id,
        note_id=note_id or f"note-{card_id}",
        front=kwargs.pop("front", f"Question {card_id}"),
        back=kwargs.pop("back", f"Answer for card {card_id} here"),
        memory=memory or MemoryState.new(NOW - timedelta(minutes=5)),
        **kwargs,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def explainer():
    return FakeExplainer()


@pytest.fixture
def deck_settings():
    """Deck settings with the default steps: learning [1, 10], relearning [10]."""
    return DeckSettings(learning_steps=(1.0, 10.0), relearning_steps=(10.0,), leech_threshold=8)


@pytest.fixture
def review_memory():
    """A mature Review-state card last seen six days ago."""
    return MemoryState(
        due=NOW - timedelta(days=1),
        state=CardState.REVIEW,
        stability=5.0,
        difficulty=5.0,
        elapsed_days=5.0,
        scheduled_days=5.0,
        reps=6,
        lapses=0,
        last_review=NOW - timedelta(days=6),
    )


@pytest.fixture
def sample_fields():
    """Provide sample note fields for rendering tests."""
    return '[{"name": "Front", "value": "<b>Hola</b>"}, {"name": "Back", "value": "Hello &amp; hi"}]'
