"""
Terminal stand-ins for the speech collaborators.

ConsoleSpeech prints what would be spoken; StdinTranscripts turns each
line typed on stdin into a final transcript.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import AsyncIterator, TextIO

from rich.console import Console

from voxdeck.review.ports import TranscriptEvent


class ConsoleSpeech:
    """Speech output that prints to the terminal."""

    def __init__(self, console: Console, seconds_per_word: float = 0.0):
        self.console = console
        self.seconds_per_word = seconds_per_word
        self._last = ""

    async def speak(self, text: str) -> None:
        self._last = text
        self.console.print(f"[bold cyan]>>[/bold cyan] {text}")
        if self.seconds_per_word:
            await asyncio.sleep(self.seconds_per_word * len(text.split()))

    def stop(self) -> None:
        pass

    def last_spoken_text(self) -> str:
        return self._last


class StdinTranscripts:
    """
    Transcript source reading lines from a text stream.

    A daemon thread does the blocking reads so the event loop can exit
    while a read is still pending. Pausing only sets ``paused``; every
    line is still delivered so the consumer can decide what a paused
    session accepts.
    """

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdin
        self._queue: asyncio.Queue | None = None
        self.paused = False
        self._stopped = False

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue

        def pump() -> None:
            try:
                for line in self.stream:
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except RuntimeError:
                # Event loop already closed
                return

        threading.Thread(target=pump, name="stdin-transcripts", daemon=True).start()

    def __aiter__(self) -> AsyncIterator[TranscriptEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TranscriptEvent]:
        if self._queue is None:
            self._start()
        while not self._stopped:
            line = await self._queue.get()
            if line is None:
                return
            text = line.strip()
            if not text:
                continue
            yield TranscriptEvent(text=text, is_final=True)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def stop(self) -> None:
        self._stopped = True
        if self._queue is not None:
            self._queue.put_nowait(None)
