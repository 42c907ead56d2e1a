"""
voxdeck: spaced-repetition review from the terminal.

A Rich terminal interface over the review engine. Lines typed during a
review are treated as speech transcripts ("answer", "good", "say again",
...), so a session plays out exactly as it would by voice.

Commands:
- voxdeck decks      - List decks with due counts
- voxdeck add-deck   - Create a deck
- voxdeck add        - Add a basic or cloze note
- voxdeck edit       - Edit the note behind a card
- voxdeck review     - Start a review session
- voxdeck settings   - Show or change deck scheduling settings
- voxdeck stats      - Show deck statistics
- voxdeck preview    - Show the next interval for each grade
- voxdeck unsuspend  - Lift a card's suspension
- voxdeck reset      - Forget a card's progress
- voxdeck reset-deck - Forget all progress in a deck
- voxdeck delete-deck - Delete a deck and everything in it
"""
from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from voxdeck.errors import VoxdeckError
from voxdeck.integrations import CardApiClient, ExplanationClient
from voxdeck.review import Command, DueFilters, ReviewEngine, SessionStats
from voxdeck.review import events as ev
from voxdeck.scheduling import Grade, StepScheduler, parse_steps
from voxdeck.scheduling.models import utc_now
from voxdeck.storage import SqliteCardStore

from .console_io import ConsoleSpeech, StdinTranscripts

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="voxdeck",
    help="voxdeck: voice-driven spaced repetition",
    no_args_is_help=True,
)
console = Console()

STYLES = {
    "info": "bold cyan",
    "warning": "bold yellow",
    "error": "bold red",
    "dim": "dim",
    "grade": {
        Grade.AGAIN: "red",
        Grade.HARD: "yellow",
        Grade.GOOD: "green",
        Grade.EASY: "bright_blue",
    },
}

# Typed during a review; everything else is treated as speech
SHORTCUTS = {
    ":undo": "undo",
    ":audio": "audio",
    ":mic": "mic",
}

CRAM_STATES = ("new", "learning", "review")


def style_grade(grade: Grade) -> str:
    color = STYLES["grade"][grade]
    return f"[{color}]{grade.label}[/{color}]"


def open_store(settings: Settings) -> SqliteCardStore:
    return SqliteCardStore(settings.database_path, settings.get_default_deck_settings())


def fail(message: str) -> None:
    console.print(f"[{STYLES['error']}]{message}[/{STYLES['error']}]")
    raise typer.Exit(1)


# =============================================================================
# Event Rendering
# =============================================================================


def render_event(event: ev.ReviewEvent) -> None:
    """Print one engine event."""
    if isinstance(event, ev.CardPresented):
        tag = " [magenta](learning)[/magenta]" if event.is_learning else ""
        console.print()
        console.print(Panel(
            event.front,
            title=f"Card {event.index + 1}/{event.total}{tag}",
            title_align="left",
            border_style="cyan",
            padding=(1, 2),
        ))
    elif isinstance(event, ev.PhaseChanged):
        console.print(f"[dim]phase: {event.phase.value}[/dim]")
    elif isinstance(event, ev.CommandReceived):
        console.print(f"[dim]command: {event.command.value}[/dim]")
    elif isinstance(event, ev.DeckInfo):
        console.print(f"[{STYLES['info']}]{event.name}[/{STYLES['info']}]: {event.card_count} card(s) due")
    elif isinstance(event, ev.LearningDue):
        console.print(f"[dim]Next learning card in {event.wait_seconds:.0f}s...[/dim]")
    elif isinstance(event, ev.CardSuspended):
        reason = "leech" if event.leech else "suspended"
        console.print(f"[{STYLES['warning']}]Card {event.card_id} suspended ({reason})[/{STYLES['warning']}]")
    elif isinstance(event, ev.UndoAvailability) and event.available:
        console.print("[dim]Type :undo to take that grade back[/dim]")
    elif isinstance(event, ev.Explaining):
        console.print("[dim]Asking for an explanation...[/dim]")
    elif isinstance(event, ev.ErrorRaised):
        console.print(f"[{STYLES['error']}]{event.message}[/{STYLES['error']}]")
    elif isinstance(event, ev.AudioChanged):
        console.print(f"[dim]audio {'on' if event.audio_on else 'off'}[/dim]")
    elif isinstance(event, ev.MicChanged):
        console.print(f"[dim]input {'on' if event.mic_on else 'paused'}[/dim]")
    elif isinstance(event, ev.SessionEnded):
        display_summary(event.stats)


def display_summary(stats: SessionStats) -> None:
    ratings = "  ".join(f"{style_grade(g)} {stats.ratings[g]}" for g in Grade)
    console.print()
    console.print(Panel(
        f"[bold]Session Complete![/bold]\n\n"
        f"Duration: {stats.duration_seconds / 60:.1f} minutes\n"
        f"Cards reviewed: {stats.cards_reviewed}\n"
        f"Ratings: {ratings}\n"
        f"Accuracy: {stats.accuracy * 100:.1f}%\n"
        f"Average response: {stats.avg_response_ms / 1000:.1f}s",
        title="Summary",
        border_style="green",
    ))


async def render_events(channel: ev.EventChannel) -> None:
    async for event in channel:
        render_event(event)


async def drive(engine: ReviewEngine, source: StdinTranscripts) -> None:
    """
    Feed typed lines into the engine until the session ends.

    While input is paused with :mic only shortcuts get through.
    """
    async for event in source:
        action = SHORTCUTS.get(event.text.lower())
        if action is None and not engine.mic_on:
            continue
        if action == "undo":
            await engine.undo()
        elif action == "audio":
            engine.toggle_audio()
        elif action == "mic":
            engine.toggle_mic()
        else:
            await engine.handle_transcript(event.text, event.is_final)
        if engine.ended:
            return
    if not engine.ended:
        await engine.execute(Command.STOP)


async def run_review(
    settings: Settings,
    deck: str,
    filters: DueFilters,
    limit: int | None,
    audio: bool,
    remote: bool,
) -> SessionStats:
    session_config = settings.get_session_config()
    if limit is not None:
        session_config = replace(session_config, fetch_limit=max(1, min(200, limit)))

    explainer = None
    if settings.has_api_configured():
        explainer = ExplanationClient(
            settings.api_base_url,
            settings.api_token,
            timeout_seconds=settings.explain_timeout_seconds,
        )

    if remote:
        store = CardApiClient(
            settings.api_base_url,
            settings.api_token,
            timeout_seconds=settings.request_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            default_settings=settings.get_default_deck_settings(),
        )
    else:
        store = open_store(settings)

    source = StdinTranscripts()
    engine = ReviewEngine(
        store=store,
        speech=ConsoleSpeech(console),
        explainer=explainer,
        transcripts=source,
        config=session_config,
    )
    if not audio:
        engine.toggle_audio()

    renderer = asyncio.create_task(render_events(engine.events))
    try:
        if await engine.start(deck, filters):
            await drive(engine, source)
        await renderer
    finally:
        await engine.close()
        if explainer is not None:
            await explainer.close()
        if remote:
            await store.close()

    if not remote and engine.stats.cards_reviewed and engine.deck_id:
        deck_id = store.get_deck(engine.deck_id).id
        store.record_session(deck_id, engine.stats)
    return engine.stats


# =============================================================================
# Commands
# =============================================================================


@app.command()
def decks() -> None:
    """List decks with due counts."""
    store = open_store(get_settings())
    rows = store.list_decks()
    if not rows:
        console.print("[dim]No decks yet. Create one with 'voxdeck add-deck NAME'.[/dim]")
        return

    table = Table()
    table.add_column("Deck")
    table.add_column("Due", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Learning", justify="right")
    table.add_column("Review", justify="right")
    table.add_column("Suspended", justify="right")
    for row in rows:
        table.add_row(
            row["name"],
            f"[yellow]{row['due_now']}[/yellow]",
            str(row["new"]),
            str(row["learning"] + row["relearning"]),
            str(row["review"]),
            str(row["suspended"]),
        )
    console.print(table)


@app.command("add-deck")
def add_deck(name: str = typer.Argument(..., help="Deck name")) -> None:
    """Create a deck."""
    store = open_store(get_settings())
    try:
        deck = store.add_deck(name)
    except (VoxdeckError, ValueError) as e:
        fail(str(e))
    console.print(f"[green]Created deck {deck.name}[/green] [dim]({deck.id})[/dim]")


@app.command()
def add(
    deck: str = typer.Argument(..., help="Deck name or id"),
    front: str = typer.Argument(..., help="Front text, or cloze text with {{c1::...}}"),
    back: Optional[str] = typer.Argument(None, help="Back text (extra text for cloze notes)"),
    cloze: bool = typer.Option(False, "--cloze", "-c", help="Create a cloze note"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Space-separated tags"),
) -> None:
    """Add a note to a deck."""
    store = open_store(get_settings())
    try:
        card_ids = store.add_note(
            deck,
            front,
            back,
            card_type="cloze" if cloze else "basic",
            tags=tags.split() if tags else None,
        )
    except (VoxdeckError, ValueError) as e:
        fail(str(e))
    console.print(f"[green]Added {len(card_ids)} card(s)[/green]")


@app.command()
def edit(
    card_id: str = typer.Argument(..., help="Id of any card generated from the note"),
    front: Optional[str] = typer.Option(None, "--front", "-f", help="New front (cloze: text)"),
    back: Optional[str] = typer.Option(None, "--back", "-b", help="New back (cloze: extra)"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Replace tags (space-separated)"),
) -> None:
    """Edit the note behind a card. Study progress is kept."""
    if front is None and back is None and tags is None:
        fail("Nothing to change; pass --front, --back or --tags")
    store = open_store(get_settings())
    try:
        added = store.update_note(
            card_id,
            front=front,
            back=back,
            tags=tags.split() if tags is not None else None,
        )
    except (VoxdeckError, ValueError) as e:
        fail(str(e))
    console.print("[green]Note updated[/green]")
    if added:
        console.print(f"[dim]Added {len(added)} card(s) for new cloze deletions[/dim]")


@app.command()
def review(
    deck: str = typer.Argument(..., help="Deck name or id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum cards to fetch"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Comma-separated tags to include"),
    cram: bool = typer.Option(False, "--cram", help="Study regardless of due dates and daily limits"),
    cram_state: Optional[str] = typer.Option(
        None,
        "--cram-state",
        help="Restrict cram mode to new, learning or review cards",
    ),
    no_audio: bool = typer.Option(False, "--no-audio", help="Do not speak card text"),
    remote: bool = typer.Option(False, "--remote", help="Use the configured HTTP card store"),
) -> None:
    """Start a review session. Type commands such as 'answer', 'good' or 'stop'."""
    settings = get_settings()
    if cram_state is not None and cram_state not in CRAM_STATES:
        fail(f"--cram-state must be one of: {', '.join(CRAM_STATES)}")
    if remote and not settings.has_api_configured():
        fail("--remote needs API_BASE_URL to be set")

    filters = DueFilters(
        tags=tuple(t.strip() for t in tags.split(",") if t.strip()) if tags else (),
        cram=cram,
        cram_state=cram_state if cram else None,
    )
    console.print("[dim]Commands: answer, hint, again/hard/good/easy, say again, explain, suspend, stop, :undo[/dim]")
    try:
        asyncio.run(run_review(settings, deck, filters, limit, audio=not no_audio, remote=remote))
    except KeyboardInterrupt:
        console.print("\n[yellow]Session interrupted.[/yellow]")


@app.command()
def settings(
    deck: str = typer.Argument(..., help="Deck name or id"),
    retention: Optional[float] = typer.Option(None, "--retention", help="Desired retention (0.5-0.99)"),
    max_interval: Optional[int] = typer.Option(None, "--max-interval", help="Maximum interval in days"),
    learning_steps: Optional[str] = typer.Option(None, "--learning-steps", help="Minutes, e.g. '1,10'"),
    relearning_steps: Optional[str] = typer.Option(None, "--relearning-steps", help="Minutes, e.g. '10'"),
    leech_threshold: Optional[int] = typer.Option(None, "--leech-threshold", help="Lapses before suspension"),
    new_per_day: Optional[int] = typer.Option(None, "--new-per-day", help="New cards per day"),
    reviews_per_day: Optional[int] = typer.Option(None, "--reviews-per-day", help="Reviews per day"),
) -> None:
    """Show or change a deck's scheduling settings. Out-of-range values are clamped."""
    store = open_store(get_settings())
    try:
        record = store.get_deck(deck)
    except VoxdeckError as e:
        fail(str(e))

    current = store.get_deck_settings(record.id)
    changes = {
        "desired_retention": retention,
        "max_interval": max_interval,
        "leech_threshold": leech_threshold,
        "new_cards_per_day": new_per_day,
        "max_reviews_per_day": reviews_per_day,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if learning_steps is not None:
        changes["learning_steps"] = parse_steps(learning_steps)
    if relearning_steps is not None:
        changes["relearning_steps"] = parse_steps(relearning_steps)

    if changes:
        current = store.save_deck_settings(record.id, replace(current, **changes))
        console.print("[green]Settings saved[/green]")

    table = Table(title=f"{record.name} settings", show_header=False)
    table.add_column("Setting", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("New cards per day", str(current.new_cards_per_day))
    table.add_row("Reviews per day", str(current.max_reviews_per_day))
    table.add_row("Desired retention", f"{current.desired_retention:.2f}")
    table.add_row("Maximum interval", f"{current.max_interval} days")
    table.add_row("Learning steps", ", ".join(f"{s:g}m" for s in current.learning_steps) or "none")
    table.add_row("Relearning steps", ", ".join(f"{s:g}m" for s in current.relearning_steps) or "none")
    table.add_row("Leech threshold", f"{current.leech_threshold} lapses")
    console.print(table)


@app.command()
def stats(deck: str = typer.Argument(..., help="Deck name or id")) -> None:
    """Show deck statistics and recent sessions."""
    store = open_store(get_settings())
    try:
        data = store.deck_stats(deck)
    except VoxdeckError as e:
        fail(str(e))

    console.print(f"\n[bold cyan]{data['name']}[/bold cyan]")
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Cards", str(data["total"]))
    table.add_row("Due now", str(data["due_now"]))
    table.add_row("New", str(data["new"]))
    table.add_row("Learning", str(data["learning"]))
    table.add_row("Review", str(data["review"]))
    table.add_row("Relearning", str(data["relearning"]))
    table.add_row("Suspended", str(data["suspended"]))
    table.add_row("Reviews today", str(data["reviews_today"]))
    rate = data["retention_rate"]
    table.add_row("Retention (30d)", f"{rate * 100:.1f}%" if rate is not None else "-")
    console.print(table)

    sessions = store.session_history(deck, limit=5)
    if sessions:
        console.print("\n[bold]Recent Sessions[/bold]")
        session_table = Table()
        session_table.add_column("Started")
        session_table.add_column("Cards", justify="right")
        session_table.add_column("Again", justify="right")
        session_table.add_column("Minutes", justify="right")
        for s in sessions:
            session_table.add_row(
                s.started_at[:16].replace("T", " "),
                str(s.cards_reviewed),
                str(s.ratings.get("again", 0)),
                f"{s.duration_seconds / 60:.1f}",
            )
        console.print(session_table)


@app.command()
def preview(card_id: str = typer.Argument(..., help="Card id")) -> None:
    """Show where each grade would send a card."""
    store = open_store(get_settings())
    try:
        card = store.get_card(card_id)
    except VoxdeckError as e:
        fail(str(e))

    config = store.get_deck_settings(card.deck_id).scheduler_config()
    now = utc_now()
    outcomes = StepScheduler(config).preview(card.memory, now)

    console.print(Panel(card.front, title=f"{card.memory.state.name.title()} card", border_style="cyan"))
    table = Table()
    table.add_column("Grade")
    table.add_column("Next state")
    table.add_column("Due in", justify="right")
    for grade, memory in outcomes.items():
        table.add_row(style_grade(grade), memory.state.name.title(), format_delay((memory.due - now).total_seconds()))
    console.print(table)


def format_delay(seconds: float) -> str:
    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.0f}m"
    if minutes < 1440:
        return f"{minutes / 60:.1f}h"
    return f"{minutes / 1440:.0f}d"


@app.command()
def unsuspend(card_id: str = typer.Argument(..., help="Card id")) -> None:
    """Lift a card's suspension."""
    store = open_store(get_settings())
    try:
        store.mark_suspended(card_id, False)
    except VoxdeckError as e:
        fail(str(e))
    console.print(f"[green]Card {card_id} unsuspended[/green]")


@app.command()
def reset(
    card_id: str = typer.Argument(..., help="Card id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Forget a card's progress; it becomes new again."""
    if not confirm and not typer.confirm(f"Reset card {card_id}? This cannot be undone!", default=False):
        raise typer.Exit(0)
    store = open_store(get_settings())
    try:
        store.reset_card(card_id)
    except VoxdeckError as e:
        fail(str(e))
    console.print(f"[green]Card {card_id} reset[/green]")


@app.command("reset-deck")
def reset_deck(
    deck: str = typer.Argument(..., help="Deck name or id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Forget all progress in a deck; every card becomes new and the review log is cleared."""
    if not confirm and not typer.confirm(f"Reset every card in {deck}? This cannot be undone!", default=False):
        raise typer.Exit(0)
    store = open_store(get_settings())
    try:
        count = store.reset_deck(deck)
    except VoxdeckError as e:
        fail(str(e))
    console.print(f"[green]Reset {count} card(s) in {deck}[/green]")


@app.command("delete-deck")
def delete_deck(
    deck: str = typer.Argument(..., help="Deck name or id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a deck with all of its notes, cards and history."""
    if not confirm and not typer.confirm(f"Delete deck {deck} and all its cards? This cannot be undone!", default=False):
        raise typer.Exit(0)
    store = open_store(get_settings())
    try:
        store.delete_deck(deck)
    except VoxdeckError as e:
        fail(str(e))
    console.print(f"[green]Deleted deck {deck}[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()

    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB")

    app()


if __name__ == "__main__":
    main()
