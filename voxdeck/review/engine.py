"""
Review Engine - the live session controller.

Drives one learner through question -> answer -> rating for each due
card, reacting to spoken or typed commands at any moment.

Flow per card:
1. pick_next chooses a learning card due now, else the next unstudied
   review card, else waits for a learning card that is nearly due,
   else ends the session
2. The front is spoken (Question phase)
3. "answer" reveals the back (Rating phase)
4. A grade runs the step scheduler, persists the result, suspends
   leeches and re-queues cards that are due again within minutes

Concurrency model: one asyncio task at a time mutates session state
(guarded by a lock). Speech, the learning-card wait and the undo window
run as separate tasks; each is cancelled through its task handle when
a command supersedes it, so a stale completion never touches state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Awaitable, TypeVar

from loguru import logger

from voxdeck.errors import ExplainError, StoreError
from voxdeck.scheduling import Grade, MemoryState, StepScheduler, detect_leech

from .cards import StudyCard, make_hint
from .clock import Clock, SystemClock
from .commands import Command, Phase, match_command
from .events import (
    AudioChanged,
    CardPresented,
    CardSuspended,
    CommandReceived,
    DeckInfo,
    ErrorRaised,
    EventChannel,
    Explaining,
    Idle,
    LearningDue,
    Listening,
    MicChanged,
    PhaseChanged,
    SessionEnded,
    Speaking,
    TranscriptReceived,
    UndoAvailability,
)
from .ports import CardStore, DueFilters, Explainer, SpeechOutput, TranscriptSource
from .queues import End, LearningQueue, ReviewQueue, Wait, pick_next
from .telemetry import SessionStats

T = TypeVar("T")


@dataclass(frozen=True)
class SessionConfig:
    """Timing and sizing knobs for a live session (seconds unless noted)."""

    request_timeout: float = 3.0
    explain_timeout: float = 10.0
    undo_window: float = 5.0
    learning_horizon: float = 30 * 60.0  # re-show within session if due sooner
    wait_threshold: float = 30.0  # wait for a learning card instead of ending
    hint_words: int = 3
    fetch_limit: int = 50


@dataclass
class UndoSnapshot:
    """Everything needed to take back the last grade."""

    card: StudyCard  # as presented, with pre-grade memory
    grade: Grade
    previous: MemoryState
    added_to_learning: bool
    note_newly_studied: bool
    response_ms: int
    persisted: bool = True  # false when the store rejected the grade


class ReviewEngine:
    """
    One review session.

    Usage:
        engine = ReviewEngine(store, speech, explainer, transcripts)
        await engine.start(deck_id)
        stats = await engine.run()

    Events are published on ``engine.events``.
    """

    def __init__(
        self,
        store: CardStore,
        speech: SpeechOutput,
        explainer: Explainer | None = None,
        transcripts: TranscriptSource | None = None,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        events: EventChannel | None = None,
    ):
        self.store = store
        self.speech = speech
        self.explainer = explainer
        self.transcripts = transcripts
        self.config = config or SessionConfig()
        self.clock = clock or SystemClock()
        self.events = events or EventChannel()

        self.phase = Phase.QUESTION
        self.review_queue = ReviewQueue()
        self.learning_queue = LearningQueue()
        self.studied_note_ids: set[str] = set()
        self.current_card: StudyCard | None = None
        self.undo_snapshot: UndoSnapshot | None = None
        self.stats = SessionStats()

        self.deck_id: str | None = None
        self.deck_name: str | None = None
        self.scheduler = StepScheduler()
        self.leech_threshold = self.scheduler.config.leech_threshold
        self.cram = False

        self.audio_on = True
        self.mic_on = True
        self.presented = 0
        self.started = False
        self.ended = False

        self._current_from_learning = False
        self._card_started_at = None
        self._speech_task: asyncio.Task | None = None
        self._wait_task: asyncio.Task | None = None
        self._undo_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._finished = asyncio.Event()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, deck_id: str, filters: DueFilters | None = None) -> bool:
        """
        Fetch due cards and present the first one.

        Returns:
            False when the session ended immediately (fetch failed or
            nothing is due)
        """
        filters = filters or DueFilters()
        async with self._lock:
            self.started = True
            self.deck_id = deck_id
            self.cram = filters.cram
            self.stats = SessionStats(started_at=self.clock.now())

            try:
                batch = await self._bounded(
                    self.store.fetch_due(deck_id, self.config.fetch_limit, filters)
                )
            except (StoreError, asyncio.TimeoutError) as exc:
                logger.warning("Failed to fetch cards for deck {}: {!r}", deck_id, exc)
                self.events.emit(ErrorRaised("Failed to fetch cards"))
                await self._end()
                return False

            settings = batch.settings.clamped()
            self.scheduler = StepScheduler(settings.scheduler_config())
            self.leech_threshold = settings.leech_threshold
            self.deck_name = batch.deck_name

            self.review_queue = ReviewQueue(batch.cards)
            self.learning_queue = LearningQueue()
            self.studied_note_ids = set()
            self.current_card = None
            self.presented = 0

            logger.info(
                "Starting session on deck {} ({} cards{})",
                batch.deck_name,
                len(batch.cards),
                ", cram" if self.cram else "",
            )
            self.events.emit(DeckInfo(name=batch.deck_name, card_count=len(batch.cards)))

            if not batch.cards:
                await self._end()
                return False

            await self._present_next()
            return not self.ended

    async def run(self) -> SessionStats:
        """Feed the transcript source into the engine until the session ends."""
        listener = None
        if self.transcripts is not None and not self.ended:
            listener = asyncio.create_task(self._listen())
        try:
            await self._finished.wait()
        finally:
            if listener is not None and listener is not asyncio.current_task():
                listener.cancel()
                await asyncio.gather(listener, return_exceptions=True)
        return self.stats

    async def close(self) -> None:
        """Tear the session down without reporting final stats."""
        self.ended = True
        self._interrupt_speech()
        self._cancel(self._wait_task)
        self._cancel(self._undo_task)
        self._wait_task = self._undo_task = None
        self.undo_snapshot = None
        if self.transcripts is not None:
            self.transcripts.stop()
        self.events.close()
        self._finished.set()

    async def _listen(self) -> None:
        async for event in self.transcripts:
            await self.handle_transcript(event.text, event.is_final)
            if self.ended:
                return
        # Transcript stream ran out
        async with self._lock:
            await self._end()

    # =========================================================================
    # Input
    # =========================================================================

    async def handle_transcript(self, text: str, is_final: bool = True) -> Command | None:
        """Report a transcript; final ones are matched and executed."""
        if self.ended:
            return None
        self.events.emit(TranscriptReceived(text=text, is_final=is_final))
        if not is_final:
            return None
        command = match_command(text, self.phase)
        if command is None:
            return None
        await self.execute(command)
        return command

    async def execute(self, command: Command) -> None:
        """
        Run one command.

        Unlike speech matching, direct calls may grade in Question phase;
        the phase then moves to Rating before grading.
        """
        async with self._lock:
            await self._dispatch(command)

    async def undo(self) -> bool:
        """Take back the last grade and show that card again in Rating phase."""
        async with self._lock:
            snapshot = self.undo_snapshot
            if snapshot is None or self.ended:
                return False

            self._interrupt_speech()
            self._clear_wait_timer()

            self.stats.revert(snapshot.grade, snapshot.response_ms)
            if snapshot.added_to_learning:
                self.learning_queue.discard(snapshot.card.id)
            if snapshot.note_newly_studied:
                self.studied_note_ids.discard(snapshot.card.note_id)

            displaced = self.current_card
            if displaced is not None and displaced.id != snapshot.card.id:
                # Put the card shown after the grade back where it came from
                if self._current_from_learning:
                    self.learning_queue.insert(displaced, displaced.memory.due)
                else:
                    self.review_queue.push_front(displaced)
            self.presented = max(0, self.presented - 1)

            self._clear_undo()

            if snapshot.persisted:
                try:
                    await self._bounded(self.store.revert_grade(snapshot.card.id, snapshot.previous))
                except (StoreError, asyncio.TimeoutError) as exc:
                    logger.warning("Failed to revert review for card {}: {!r}", snapshot.card.id, exc)
                    self.events.emit(ErrorRaised("Failed to undo review"))

            logger.info("Undid {} on card {}", snapshot.grade.label, snapshot.card.id)
            self._show(snapshot.card, Phase.RATING, from_learning=False)
            self._ready()
            return True

    def toggle_audio(self) -> bool:
        self.audio_on = not self.audio_on
        if not self.audio_on:
            self._interrupt_speech()
            if not self.ended:
                self._ready()
        self.events.emit(AudioChanged(audio_on=self.audio_on))
        return self.audio_on

    def toggle_mic(self) -> bool:
        self.mic_on = not self.mic_on
        if self.transcripts is not None:
            if self.mic_on:
                self.transcripts.resume()
            else:
                self.transcripts.pause()
        self.events.emit(MicChanged(mic_on=self.mic_on))
        return self.mic_on

    # =========================================================================
    # Command Dispatch
    # =========================================================================

    async def _dispatch(self, command: Command) -> None:
        if self.ended or not self.started:
            return
        # Between cards (waiting on a learning card) only Stop does anything
        if self.current_card is None and command is not Command.STOP:
            return

        self._interrupt_speech()
        self._clear_undo()
        self._clear_wait_timer()
        self.events.emit(CommandReceived(command))
        logger.debug("Command {} in {} phase", command.value, self.phase.value)

        card = self.current_card

        if command is Command.ANSWER:
            self._set_phase(Phase.RATING)
            self._speak(card.back)
        elif command is Command.HINT:
            self._speak(make_hint(card.back, self.config.hint_words))
        elif command is Command.REPEAT:
            self._speak(self.speech.last_spoken_text())
        elif command.grade is not None:
            if self.phase is Phase.QUESTION:
                self._set_phase(Phase.RATING)
            await self._grade(card, command.grade)
        elif command is Command.EXPLAIN:
            self._explain(card)
        elif command is Command.SUSPEND:
            await self._suspend(card)
        elif command is Command.STOP:
            await self._end()
        else:
            raise ValueError(f"Unhandled command: {command!r}")

    async def _grade(self, card: StudyCard, grade: Grade) -> None:
        now = self.clock.now()
        response_ms = 0
        if self._card_started_at is not None:
            response_ms = max(0, int((now - self._card_started_at).total_seconds() * 1000))

        self.stats.record(grade, response_ms)
        newly_studied = card.note_id not in self.studied_note_ids
        self.studied_note_ids.add(card.note_id)

        previous = card.memory
        updated = self.scheduler.schedule(previous, grade, now)
        leeched = detect_leech(updated, grade, self.leech_threshold)

        added_to_learning = False
        persisted = False
        try:
            await self._bounded(
                self.store.persist_grade(
                    card.id,
                    updated,
                    grade=grade,
                    previous=previous,
                    duration_ms=response_ms,
                )
            )
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.warning("Failed to save review for card {}: {!r}", card.id, exc)
            self.events.emit(ErrorRaised("Failed to save review"))
        else:
            persisted = True
            logger.info(
                "Graded card {} {}: {} -> {}, due {}",
                card.id,
                grade.label,
                previous.state.name,
                updated.state.name,
                updated.due.isoformat(),
            )
            if leeched:
                logger.info("Card {} reached {} lapses, suspending as leech", card.id, updated.lapses)
                self.learning_queue.discard(card.id)
                self.review_queue.discard(card.id)
                await self._suspend_card(card.id, leech=True)
            elif self._fits_learning_queue(updated, now):
                self.learning_queue.insert(replace(card, memory=updated), updated.due)
                added_to_learning = True

        self._set_undo(
            UndoSnapshot(
                card=card,
                grade=grade,
                previous=previous,
                added_to_learning=added_to_learning,
                note_newly_studied=newly_studied,
                response_ms=response_ms,
                persisted=persisted,
            )
        )
        await self._present_next()

    def _fits_learning_queue(self, memory: MemoryState, now) -> bool:
        if self.cram or not memory.state.is_stepping:
            return False
        return (memory.due - now).total_seconds() < self.config.learning_horizon

    async def _suspend(self, card: StudyCard) -> None:
        self.learning_queue.discard(card.id)
        await self._suspend_card(card.id, leech=False)
        await self._present_next()

    async def _suspend_card(self, card_id: str, leech: bool) -> bool:
        try:
            await self._bounded(self.store.set_suspended(card_id, True))
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.warning("Failed to suspend card {}: {!r}", card_id, exc)
            self.events.emit(ErrorRaised("Failed to suspend card"))
            return False
        self.events.emit(CardSuspended(card_id=card_id, leech=leech))
        return True

    def _explain(self, card: StudyCard) -> None:
        self.events.emit(Explaining())
        if self.explainer is None:
            self.events.emit(ErrorRaised("Explanations are not available"))
            self._ready()
            return
        self._speech_task = asyncio.create_task(self._explain_then_speak(card))

    async def _explain_then_speak(self, card: StudyCard) -> None:
        try:
            text = await asyncio.wait_for(
                self.explainer.explain(card.front, card.back),
                self.config.explain_timeout,
            )
        except (ExplainError, asyncio.TimeoutError) as exc:
            logger.warning("Failed to explain card {}: {!r}", card.id, exc)
            self.events.emit(ErrorRaised("Failed to get explanation"))
            self._ready()
            return
        self._speak(text)

    # =========================================================================
    # Presentation
    # =========================================================================

    async def _present_next(self) -> None:
        self.current_card = None
        pending_learning = len(self.learning_queue)
        result = pick_next(
            self.review_queue,
            self.learning_queue,
            self.studied_note_ids,
            self.clock.now(),
            self.config.wait_threshold,
        )

        if isinstance(result, End):
            await self._end()
            return
        if isinstance(result, Wait):
            self._schedule_wait(result.seconds)
            return

        from_learning = len(self.learning_queue) < pending_learning
        self._show(result, Phase.QUESTION, from_learning=from_learning)
        self._speak(result.front)

    def _show(self, card: StudyCard, phase: Phase, from_learning: bool) -> None:
        self.current_card = card
        self._current_from_learning = from_learning
        self._card_started_at = self.clock.now()
        self.presented += 1
        self.phase = phase
        logger.debug("Presenting card {} ({})", card.id, card.memory.state.name)
        self.events.emit(
            CardPresented(
                card_id=card.id,
                index=self.presented - 1,
                total=self.presented + len(self.review_queue) + len(self.learning_queue),
                front=card.front,
                back=card.back,
                is_learning=card.is_learning,
            )
        )
        self.events.emit(PhaseChanged(phase))

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        self.events.emit(PhaseChanged(phase))

    def _schedule_wait(self, seconds: float) -> None:
        self._clear_wait_timer()
        self.events.emit(LearningDue(wait_seconds=seconds))
        self._wait_task = asyncio.create_task(self._wait_then_present(seconds))

    async def _wait_then_present(self, seconds: float) -> None:
        await self.clock.sleep(seconds)
        async with self._lock:
            if self._wait_task is not asyncio.current_task() or self.ended:
                return
            self._wait_task = None
            await self._present_next()

    async def _end(self) -> None:
        if self.ended:
            return
        self.ended = True
        self._interrupt_speech()
        self._clear_undo()
        self._clear_wait_timer()
        self.current_card = None
        self.stats.finish(self.clock.now())
        if self.transcripts is not None:
            self.transcripts.stop()
        logger.info(
            "Session ended: {} cards in {:.0f}s",
            self.stats.cards_reviewed,
            self.stats.duration_seconds,
        )
        self.events.emit(SessionEnded(self.stats))
        self.events.close()
        self._finished.set()

    # =========================================================================
    # Speech
    # =========================================================================

    def _speak(self, text: str) -> None:
        self._interrupt_speech()
        if not self.audio_on or not text:
            self._ready()
            return
        self.events.emit(Speaking(text))
        self._speech_task = asyncio.create_task(self._speak_then_listen(text))

    async def _speak_then_listen(self, text: str) -> None:
        try:
            await self.speech.speak(text)
        except Exception as exc:
            logger.warning("Speech output failed: {!r}", exc)
            self.events.emit(ErrorRaised("Speech output failed"))
        if self._speech_task is asyncio.current_task():
            self._speech_task = None
            self._ready()

    def _interrupt_speech(self) -> None:
        task, self._speech_task = self._speech_task, None
        self._cancel(task)
        self.speech.stop()

    def _ready(self) -> None:
        self.events.emit(Listening() if self.mic_on else Idle())

    # =========================================================================
    # Timers
    # =========================================================================

    def _set_undo(self, snapshot: UndoSnapshot) -> None:
        self._clear_undo()
        self.undo_snapshot = snapshot
        self.events.emit(UndoAvailability(True))
        self._undo_task = asyncio.create_task(self._expire_undo(snapshot))

    async def _expire_undo(self, snapshot: UndoSnapshot) -> None:
        await self.clock.sleep(self.config.undo_window)
        if self.undo_snapshot is snapshot:
            self.undo_snapshot = None
            self._undo_task = None
            self.events.emit(UndoAvailability(False))

    def _clear_undo(self) -> None:
        task, self._undo_task = self._undo_task, None
        self._cancel(task)
        if self.undo_snapshot is not None:
            self.undo_snapshot = None
            self.events.emit(UndoAvailability(False))

    def _clear_wait_timer(self) -> None:
        task, self._wait_task = self._wait_task, None
        self._cancel(task)

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, self.config.request_timeout)
