"""
Remote card store client.

Implements the session engine's card store port against a voxdeck
HTTP server:

    GET  /api/cards/next?deckId=&limit=&tags=&mode=cram&cramState=
    GET  /api/decks/{id}/settings
    POST /api/cards/{id}/review        {rating, durationMs, memory, previous}
    POST /api/cards/{id}/review/undo   {memory}
    POST /api/cards/{id}/suspend       {suspended}
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from voxdeck.errors import CardNotFoundError, StoreError
from voxdeck.review.cards import StudyCard
from voxdeck.review.ports import DueBatch, DueFilters
from voxdeck.scheduling.models import DeckSettings, Grade, MemoryState


class CardApiClient:
    """HTTP client for a remote card store."""

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        timeout_seconds: float = 3.0,
        retry_attempts: int = 2,
        backoff_seconds: float = 0.25,
        default_settings: DeckSettings | None = None,
    ):
        """
        Initialize the card store client.

        Args:
            api_url: Base URL of the card store
            token: Optional bearer token
            timeout_seconds: Per-request timeout
            retry_attempts: Attempts per call on timeouts, transport errors and 5xx
            backoff_seconds: First retry delay; doubles on each further attempt
            default_settings: Settings used when the server has none for a deck
        """
        self.api_url = api_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.default_settings = default_settings or DeckSettings()
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request with retry logic.

        Raises:
            CardNotFoundError: On 404
            StoreError: On any other failure once retries are exhausted
        """
        url = f"{self.api_url}{path}"
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json() if response.content else {}

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 404:
                    raise CardNotFoundError(f"{method} {path}: not found") from e
                if status < 500:
                    # Don't retry on 4xx client errors
                    logger.error("Card store rejected {} {}: {}", method, path, status)
                    raise StoreError(f"{method} {path} failed with {status}") from e
                last_error = e
                logger.warning(
                    "Card store error {} on attempt {}/{}",
                    status,
                    attempt + 1,
                    self.retry_attempts,
                )

            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                logger.warning(
                    "Card store request failed on attempt {}/{}: {!r}",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )

            except ValueError as e:
                raise StoreError(f"{method} {path} returned invalid JSON") from e

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.backoff_seconds * 2**attempt)

        logger.error("Card store call {} {} failed after {} attempts", method, path, self.retry_attempts)
        raise StoreError(f"{method} {path} failed: {last_error}") from last_error

    # =========================================================================
    # Card Store Port
    # =========================================================================

    async def fetch_due(self, deck_id: str, limit: int, filters: DueFilters) -> DueBatch:
        params: dict[str, Any] = {"deckId": deck_id, "limit": limit}
        if filters.tags:
            params["tags"] = ",".join(filters.tags)
        if filters.cram:
            params["mode"] = "cram"
            if filters.cram_state:
                params["cramState"] = filters.cram_state

        data = await self._request("GET", "/api/cards/next", params=params)
        settings = await self.get_deck_settings(deck_id)
        cards = [StudyCard.from_row(row) for row in data.get("cards", [])]
        return DueBatch(
            deck_id=deck_id,
            deck_name=data.get("deckName") or deck_id,
            settings=settings,
            cards=cards,
        )

    async def get_deck_settings(self, deck_id: str) -> DeckSettings:
        data = await self._request("GET", f"/api/decks/{deck_id}/settings")
        return DeckSettings.from_dict(data.get("settings") or {}, self.default_settings)

    async def persist_grade(
        self,
        card_id: str,
        memory: MemoryState,
        *,
        grade: Grade,
        previous: MemoryState,
        duration_ms: int = 0,
    ) -> None:
        await self._request(
            "POST",
            f"/api/cards/{card_id}/review",
            json={
                "rating": grade.label,
                "durationMs": duration_ms,
                "memory": memory.to_dict(),
                "previous": previous.to_dict(),
            },
        )

    async def revert_grade(self, card_id: str, memory: MemoryState) -> None:
        await self._request(
            "POST",
            f"/api/cards/{card_id}/review/undo",
            json={"memory": memory.to_dict()},
        )

    async def set_suspended(self, card_id: str, suspended: bool) -> None:
        await self._request(
            "POST",
            f"/api/cards/{card_id}/suspend",
            json={"suspended": suspended},
        )

    async def health_check(self) -> bool:
        """
        Check if the card store is reachable.

        Returns:
            True if the API answers 200, False otherwise
        """
        try:
            response = await self.client.get(f"{self.api_url}/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False
