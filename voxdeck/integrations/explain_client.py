"""
Explanation service client.

Asks the server to explain a card: POST /api/explain {front, back}
returns {explanation}.
"""

from __future__ import annotations

import httpx
from loguru import logger

from voxdeck.errors import ExplainError


class ExplanationClient:
    """HTTP client for card explanations."""

    def __init__(self, api_url: str, token: str | None = None, timeout_seconds: float = 10.0):
        self.api_url = api_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), headers=headers)

    async def close(self) -> None:
        await self.client.aclose()

    async def explain(self, front: str, back: str) -> str:
        """
        Explain a card's answer.

        Raises:
            ExplainError: On transport failure, an error status or an empty answer
        """
        try:
            response = await self.client.post(
                f"{self.api_url}/api/explain",
                json={"front": front, "back": back},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Explain request failed: {!r}", e)
            raise ExplainError(f"Explain request failed: {e}") from e
        except ValueError as e:
            raise ExplainError("Explain service returned invalid JSON") from e

        explanation = (data.get("explanation") or "").strip()
        if not explanation:
            raise ExplainError("Explain service returned no explanation")
        return explanation
