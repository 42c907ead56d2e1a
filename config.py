"""
Configuration settings for voxdeck.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from voxdeck.review.engine import SessionConfig
from voxdeck.scheduling.models import DeckSettings, parse_steps

MAX_FETCH_LIMIT = 200


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    database_path: Path = Field(
        default=Path.home() / ".voxdeck" / "voxdeck.db",
        description="SQLite database holding decks, notes, cards and reviews",
    )

    # ========================================
    # Remote Card Store
    # ========================================
    api_base_url: str | None = Field(
        default=None,
        description="Base URL of a remote card store (e.g. https://cards.example.com)",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token sent to the remote card store",
    )
    request_timeout_seconds: float = Field(
        default=3.0,
        description="Timeout for card store calls made during a live session",
    )
    retry_attempts: int = Field(
        default=2,
        description="Attempts per card store call before giving up",
    )
    explain_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for explanation requests",
    )

    # ========================================
    # Review Session
    # ========================================
    undo_window_seconds: float = Field(
        default=5.0,
        description="How long the last grade stays undoable",
    )
    learning_queue_horizon_minutes: float = Field(
        default=30.0,
        description="Cards due again within this many minutes are re-shown in the same session",
    )
    learning_wait_threshold_seconds: float = Field(
        default=30.0,
        description="Wait for a pending learning card instead of ending when it is this close",
    )
    hint_word_count: int = Field(
        default=3,
        description="Number of answer words spoken as a hint",
    )
    fetch_limit: int = Field(
        default=50,
        description="Maximum cards fetched when a session starts",
    )

    # ========================================
    # Deck Defaults
    # ========================================
    default_new_cards_per_day: int = Field(default=20)
    default_max_reviews_per_day: int = Field(default=200)
    default_desired_retention: float = Field(default=0.9)
    default_max_interval: int = Field(default=36500)
    default_leech_threshold: int = Field(default=8)
    default_learning_steps: str = Field(
        default="1,10",
        description="Comma-separated learning step delays in minutes",
    )
    default_relearning_steps: str = Field(
        default="10",
        description="Comma-separated relearning step delays in minutes",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum level written to stderr",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file (rotated at 10 MB)",
    )

    @field_validator("fetch_limit")
    @classmethod
    def _clamp_fetch_limit(cls, value: int) -> int:
        return max(1, min(MAX_FETCH_LIMIT, value))

    def get_session_config(self) -> SessionConfig:
        """Build the live-session tuning knobs."""
        return SessionConfig(
            request_timeout=self.request_timeout_seconds,
            explain_timeout=self.explain_timeout_seconds,
            undo_window=self.undo_window_seconds,
            learning_horizon=self.learning_queue_horizon_minutes * 60.0,
            wait_threshold=self.learning_wait_threshold_seconds,
            hint_words=self.hint_word_count,
            fetch_limit=self.fetch_limit,
        )

    def get_default_deck_settings(self) -> DeckSettings:
        """Deck settings used when a deck has none stored."""
        return DeckSettings(
            new_cards_per_day=self.default_new_cards_per_day,
            max_reviews_per_day=self.default_max_reviews_per_day,
            desired_retention=self.default_desired_retention,
            max_interval=self.default_max_interval,
            leech_threshold=self.default_leech_threshold,
            learning_steps=parse_steps(self.default_learning_steps),
            relearning_steps=parse_steps(self.default_relearning_steps),
        ).clamped()

    def has_api_configured(self) -> bool:
        """Check if a remote card store is configured."""
        return bool(self.api_base_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
