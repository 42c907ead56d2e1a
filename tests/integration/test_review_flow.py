"""
Integration tests: a review session against the local SQLite store.

Speech and transcripts are fakes; scheduling, persistence and undo
run for real.
"""

import sqlite3
from datetime import timedelta

import pytest
import pytest_asyncio

from conftest import NOW, FakeSpeech, ManualClock

from voxdeck.review.commands import Command
from voxdeck.review.engine import ReviewEngine, SessionConfig
from voxdeck.review.events import CardPresented, SessionEnded
from voxdeck.scheduling.models import CardState, DeckSettings, Grade
from voxdeck.storage import SqliteCardStore


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def store(clock):
    store = SqliteCardStore(":memory:", clock=clock.now)
    yield store
    store.close()


@pytest.fixture
def deck(store):
    deck = store.add_deck("Spanish")
    store.save_deck_settings(deck.id, DeckSettings(learning_steps=(1.0,), relearning_steps=(10.0,)))
    return deck


@pytest_asyncio.fixture
async def engine(store, clock):
    engine = ReviewEngine(store, FakeSpeech(), config=SessionConfig(wait_threshold=120), clock=clock)
    yield engine
    await engine.close()


def presented(engine):
    return [event.card_id for event in engine.events.drain() if isinstance(event, CardPresented)]


class TestReviewFlow:
    """End-to-end sessions on a real database."""

    @pytest.mark.asyncio
    async def test_new_card_learns_and_graduates(self, engine, store, deck, clock):
        card_id, = store.add_note(deck.id, "uno", "one")
        await engine.start(deck.id)

        await engine.execute(Command.AGAIN)
        assert store.get_card(card_id).memory.state is CardState.LEARNING

        await clock.advance(60)
        await engine.execute(Command.GOOD)

        assert presented(engine) == [card_id, card_id]
        assert engine.ended
        memory = store.get_card(card_id).memory
        assert memory.state is CardState.REVIEW
        assert memory.reps == 2
        assert store.deck_stats(deck.id)["reviews_today"] == 2

    @pytest.mark.asyncio
    async def test_leech_is_suspended_in_database(self, engine, store, deck, review_memory):
        card_id, = store.add_note(deck.id, "dos", "two")
        store.save_grade(card_id, review_memory.evolve(lapses=7), Grade.GOOD, review_memory)
        await engine.start(deck.id)

        await engine.execute(Command.AGAIN)

        assert store.is_suspended(card_id)
        assert store.get_card(card_id).memory.lapses == 8
        assert store.load_due(deck.id).cards == []

    @pytest.mark.asyncio
    async def test_undo_restores_database(self, engine, store, deck):
        ids = store.add_note(deck.id, "uno", "one") + store.add_note(deck.id, "dos", "two")
        before = {card_id: store.get_card(card_id).memory for card_id in ids}
        await engine.start(deck.id)
        shown = engine.current_card.id

        await engine.execute(Command.EASY)
        assert store.get_card(shown).memory.state is CardState.REVIEW
        assert await engine.undo()

        assert engine.current_card.id == shown
        assert store.get_card(shown).memory == before[shown]
        assert store.deck_stats(deck.id)["reviews_today"] == 0

    @pytest.mark.asyncio
    async def test_undo_of_unsaved_grade_keeps_earlier_reviews(self, engine, store, deck, review_memory, monkeypatch):
        card_id, = store.add_note(deck.id, "dos", "two")
        store.save_grade(card_id, review_memory, Grade.GOOD, review_memory)
        store.add_note(deck.id, "tres", "three")

        def locked(*args):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "save_grade", locked)
        await engine.start(deck.id)
        await engine.execute(Command.GOOD)

        assert await engine.undo()

        assert store.deck_stats(deck.id)["reviews_today"] == 1
        assert store.get_card(card_id).memory == review_memory

    @pytest.mark.asyncio
    async def test_cloze_siblings_shown_once(self, engine, store, deck):
        store.add_note(deck.id, "{{c1::Madrid}} is in {{c2::Spain}}", card_type="cloze")
        store.add_note(deck.id, "tres", "three")
        await engine.start(deck.id)

        await engine.execute(Command.EASY)
        await engine.execute(Command.EASY)

        events = engine.events.drain()
        shown = [event for event in events if isinstance(event, CardPresented)]
        assert len(shown) == 2
        assert len({store.get_card(event.card_id).note_id for event in shown}) == 2
        assert any(isinstance(event, SessionEnded) for event in events)

    @pytest.mark.asyncio
    async def test_session_history_recorded(self, engine, store, deck, clock):
        store.add_note(deck.id, "uno", "one")
        await engine.start(deck.id)
        await clock.advance(4)
        await engine.execute(Command.AGAIN)
        await clock.advance(60)
        await engine.execute(Command.GOOD)

        store.record_session(deck.id, engine.stats)

        history = store.session_history(deck.id)
        assert history[0].cards_reviewed == 2
        assert history[0].ratings == {"again": 1, "hard": 0, "good": 1, "easy": 0}
        assert history[0].duration_seconds == 64.0
        assert engine.stats.ended_at == NOW + timedelta(seconds=64)
