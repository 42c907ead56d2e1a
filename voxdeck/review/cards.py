"""
Card snapshots and text rendering.

Note fields are stored as a JSON list of ``{"name", "value"}`` objects.
Rendering turns them into plain front/back text suitable for speech:
cloze deletions are resolved and HTML is stripped.
"""

from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass, field
from typing import Any

from voxdeck.scheduling.models import CardState, MemoryState

ERROR_FRONT = "Error reading card"
EMPTY_FRONT = "Empty card"
CLOZE_BLANK = "blank"

CLOZE_RE = re.compile(r"\{\{c(\d+)::(.*?)(?:::(.*?))?\}\}", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_BREAK_RE = re.compile(r"<br\s*/?>|</(?:div|p|li)>", re.IGNORECASE)
_SPACE_RE = re.compile(r"\s+")


@dataclass
class StudyCard:
    """A card as presented in a session: rendered text plus its memory state."""

    id: str
    note_id: str
    front: str
    back: str
    memory: MemoryState
    card_type: str = "basic"
    deck_id: str | None = None
    tags: list[str] = field(default_factory=list)
    ordinal: int = 1

    @property
    def is_learning(self) -> bool:
        return self.memory.state in (CardState.LEARNING, CardState.RELEARNING)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> StudyCard:
        """Build from a joined card/note record (store row or API payload)."""
        card_type = row.get("card_type") or "basic"
        ordinal = int(row.get("ordinal") or 1)
        front, back = render_card(row.get("fields"), card_type, ordinal)
        tags = row.get("tags") or ""
        if isinstance(tags, str):
            tags = tags.split()
        memory = row.get("memory")
        if isinstance(memory, MemoryState):
            pass
        elif isinstance(memory, dict):
            memory = MemoryState.from_dict(memory)
        else:
            memory = MemoryState.from_dict(row)
        return cls(
            id=str(row["id"]),
            note_id=str(row["note_id"]),
            front=front,
            back=back,
            memory=memory,
            card_type=card_type,
            deck_id=str(row["deck_id"]) if row.get("deck_id") is not None else None,
            tags=list(tags),
            ordinal=ordinal,
        )


def strip_html(text: str) -> str:
    """Remove tags, decode entities and collapse whitespace."""
    text = _BREAK_RE.sub(" ", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return _SPACE_RE.sub(" ", text).strip()


def process_cloze(text: str, show_answer: bool, ordinal: int | None = None) -> str:
    """
    Resolve ``{{cN::answer::hint}}`` deletions.

    The active deletion (ordinal ``ordinal``, or every deletion when None)
    becomes its hint or "blank" on the question side. Everything else,
    and the active deletion on the answer side, becomes the answer text.
    """

    def replace(match: re.Match[str]) -> str:
        number, answer, hint = match.group(1), match.group(2), match.group(3)
        active = ordinal is None or int(number) == ordinal
        if show_answer or not active:
            return answer
        return hint or CLOZE_BLANK

    return CLOZE_RE.sub(replace, text)


def cloze_ordinals(text: str) -> list[int]:
    """Distinct cloze numbers in ascending order."""
    return sorted({int(m.group(1)) for m in CLOZE_RE.finditer(text)})


def parse_fields(fields_json: Any) -> list[dict[str, Any]]:
    """Decode a fields payload; raises ValueError when it is not a JSON list."""
    if isinstance(fields_json, list):
        return fields_json
    fields = json.loads(fields_json)
    if not isinstance(fields, list):
        raise ValueError("fields must be a JSON list")
    return fields


def _value(fields: list[dict[str, Any]], index: int) -> str | None:
    if index >= len(fields):
        return None
    entry = fields[index]
    if isinstance(entry, dict):
        return str(entry.get("value") or "")
    return str(entry)


def render_card(fields_json: Any, card_type: str = "basic", ordinal: int | None = None) -> tuple[str, str]:
    """
    Render note fields to ``(front, back)`` text.

    Unparseable payloads render as a placeholder instead of raising so
    a single bad card never aborts a session.
    """
    try:
        fields = parse_fields(fields_json)
    except (TypeError, ValueError):
        return ERROR_FRONT, ""

    if not fields:
        return EMPTY_FRONT, ""

    if card_type == "cloze":
        text = _value(fields, 0) or ""
        return (
            strip_html(process_cloze(text, False, ordinal)),
            strip_html(process_cloze(text, True, ordinal)),
        )

    front = strip_html(_value(fields, 0) or "")
    back_raw = _value(fields, 1)
    back = strip_html(back_raw) if back_raw is not None else front
    return front, back


def make_hint(answer: str, words: int = 3) -> str:
    """First few words of the answer followed by an ellipsis."""
    parts = answer.split()
    if not parts:
        return ""
    return " ".join(parts[:words]) + "..."
