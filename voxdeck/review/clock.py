"""
Time source for the review engine.

The engine never reads the wall clock or sleeps directly, so tests can
substitute a clock they advance by hand.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

from voxdeck.scheduling.models import utc_now


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in UTC with asyncio sleeps."""

    def now(self) -> datetime:
        return utc_now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
