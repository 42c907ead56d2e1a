"""
Voice command matching.

Maps a free-text utterance plus the current review phase to one
command. Aliases match as whole words or whole phrases, never inside
a longer word, so "gut" rates Good while "gutter" matches nothing.

The bare word "again" is a rating, but "say again" or "again please"
ask for the last prompt to be repeated; repeat phrases are therefore
checked before anything else.

Rating words are only recognised in the RATING phase. Saying "good"
while the question is still being read is far more often part of a
sentence than an intended grade.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from voxdeck.scheduling.models import Grade


class Phase(str, Enum):
    """Review phase: question shown, or answer revealed and awaiting a rating."""

    QUESTION = "question"
    RATING = "rating"


class Command(str, Enum):
    """Discrete commands understood by the review engine."""

    ANSWER = "answer"
    HINT = "hint"
    REPEAT = "repeat"
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"
    EXPLAIN = "explain"
    SUSPEND = "suspend"
    STOP = "stop"

    @property
    def grade(self) -> Grade | None:
        """The grade this command applies, or None for non-rating commands."""
        return _GRADES.get(self)


_GRADES = {
    Command.AGAIN: Grade.AGAIN,
    Command.HARD: Grade.HARD,
    Command.GOOD: Grade.GOOD,
    Command.EASY: Grade.EASY,
}


@dataclass(frozen=True)
class CommandDef:
    """A command, the phrases that trigger it, and the phases it is legal in."""

    command: Command
    aliases: tuple[str, ...]
    phases: frozenset[Phase]


BOTH = frozenset({Phase.QUESTION, Phase.RATING})
QUESTION_ONLY = frozenset({Phase.QUESTION})
RATING_ONLY = frozenset({Phase.RATING})

# Declaration order is match priority
COMMANDS: tuple[CommandDef, ...] = (
    CommandDef(
        Command.ANSWER,
        (
            "answer", "show", "show answer", "show me", "flip",
            "antwort", "zeig", "zeig mir", "umdrehen",
        ),
        QUESTION_ONLY,
    ),
    CommandDef(
        Command.HINT,
        ("hint", "give me a hint", "clue", "hinweis", "tipp"),
        QUESTION_ONLY,
    ),
    CommandDef(
        Command.REPEAT,
        (
            "repeat", "say again", "again please", "say it again", "one more time",
            "wiederholen", "nochmal bitte", "noch einmal", "nochmals",
        ),
        BOTH,
    ),
    CommandDef(Command.AGAIN, ("again", "nochmal"), RATING_ONLY),
    CommandDef(Command.HARD, ("hard", "difficult", "schwer", "schwierig"), RATING_ONLY),
    CommandDef(Command.GOOD, ("good", "okay", "ok", "gut"), RATING_ONLY),
    CommandDef(Command.EASY, ("easy", "simple", "leicht", "einfach"), RATING_ONLY),
    CommandDef(
        Command.EXPLAIN,
        (
            "explain", "explain this", "explain it", "why",
            "erklär", "erklären", "erkläre", "warum",
        ),
        RATING_ONLY,
    ),
    CommandDef(Command.SUSPEND, ("suspend", "suspend card", "sperren"), BOTH),
    CommandDef(
        Command.STOP,
        (
            "stop", "quit", "end", "finish", "done", "end session",
            "stopp", "aufhören", "ende", "fertig", "schluss",
        ),
        BOTH,
    ),
)

_WORD_RE = re.compile(r"[^\W_]+(?:'[^\W_]+)*")


def tokenize(text: str) -> tuple[str, ...]:
    """Lowercase word tokens; punctuation and extra whitespace are dropped."""
    return tuple(_WORD_RE.findall(text.lower().strip()))


def contains_phrase(tokens: tuple[str, ...], phrase: str) -> bool:
    """Whether ``phrase`` appears in ``tokens`` as a contiguous run of whole words."""
    needle = tokenize(phrase)
    if not needle or len(needle) > len(tokens):
        return False
    width = len(needle)
    return any(tokens[i:i + width] == needle for i in range(len(tokens) - width + 1))


def _matches(definition: CommandDef, tokens: tuple[str, ...]) -> bool:
    return any(contains_phrase(tokens, alias) for alias in definition.aliases)


def match_command(transcript: str, phase: Phase) -> Command | None:
    """
    Match a transcript to a command legal in ``phase``.

    Args:
        transcript: Raw recognised speech
        phase: Current review phase

    Returns:
        The first matching command, or None when nothing matches
    """
    tokens = tokenize(transcript)
    if not tokens:
        return None

    repeat = next(d for d in COMMANDS if d.command is Command.REPEAT)
    if phase in repeat.phases and _matches(repeat, tokens):
        return Command.REPEAT

    for definition in COMMANDS:
        if definition.command is Command.REPEAT or phase not in definition.phases:
            continue
        if _matches(definition, tokens):
            return definition.command

    return None
