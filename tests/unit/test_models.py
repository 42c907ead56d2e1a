"""
Unit tests for the scheduling data model.
"""

import pytest

from voxdeck.scheduling.models import (
    CardState,
    DeckSettings,
    Grade,
    MemoryState,
    SchedulerConfig,
    parse_steps,
)


class TestGrade:
    def test_labels(self):
        assert Grade.AGAIN.label == "again"
        assert Grade.from_label(" Easy ") is Grade.EASY

    def test_unknown_label(self):
        with pytest.raises(ValueError):
            Grade.from_label("perfect")


class TestMemoryState:
    def test_new_card(self, now):
        memory = MemoryState.new(now)

        assert memory.state is CardState.NEW
        assert memory.reps == 0
        assert memory.due == now

    def test_serialized_form(self, review_memory):
        data = review_memory.to_dict()

        assert data["state"] == 2
        assert data["due"].startswith("2024-02-29")
        assert MemoryState.from_dict(data) == review_memory

    def test_missing_fields_fall_back_to_new(self):
        memory = MemoryState.from_dict({"due": "2024-03-01T12:00:00Z"})

        assert memory.state is CardState.NEW
        assert memory.last_review is None
        assert memory.due.tzinfo is not None


class TestSteps:
    def test_parse(self):
        assert parse_steps("1, 10") == (1.0, 10.0)
        assert parse_steps("") == ()

    def test_invalid_entries_dropped(self):
        assert parse_steps("1,abc,-5,0,nan,3") == (1.0, 3.0)


class TestDeckSettings:
    def test_clamped(self):
        settings = DeckSettings(
            new_cards_per_day=-3,
            desired_retention=0.1,
            max_interval=0,
            leech_threshold=500,
        ).clamped()

        assert settings.new_cards_per_day == 0
        assert settings.desired_retention == 0.5
        assert settings.max_interval == 1
        assert settings.leech_threshold == 99

    def test_from_dict_merges_over_defaults(self):
        defaults = DeckSettings(new_cards_per_day=5)

        settings = DeckSettings.from_dict({"max_interval": "365", "learning_steps": [3, "x"]}, defaults)

        assert settings.new_cards_per_day == 5
        assert settings.max_interval == 365
        assert settings.learning_steps == (3.0,)

    def test_from_dict_ignores_garbage(self):
        settings = DeckSettings.from_dict({"desired_retention": "high", "leech_threshold": None})

        assert settings.desired_retention == 0.9
        assert settings.leech_threshold == 8

    def test_scheduler_config(self):
        config = DeckSettings(desired_retention=0.8, relearning_steps=(5.0,)).scheduler_config()

        assert config == SchedulerConfig(request_retention=0.8, relearning_steps=(5.0,))
