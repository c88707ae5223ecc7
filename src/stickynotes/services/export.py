"""Plain-text export of the note collection."""

import datetime
from typing import List, Sequence

from stickynotes.models.schema import UNTITLED_TITLE, Note

DATE_FORMAT = "%Y-%m-%d %H:%M"
HEADER_RULE = "=" * 50
NOTE_RULE = "-" * 30


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def _render_note(index: int, note: Note) -> List[str]:
    lines = [
        f"Note {index}",
        f"Title: {note.title or UNTITLED_TITLE}",
        f"Priority: {note.priority.value}",
        f"Favorite: {_yes_no(note.is_favorite)}",
        f"Archived: {_yes_no(note.is_archived)}",
        f"Created: {note.date_created.strftime(DATE_FORMAT)}",
        f"Modified: {note.date_modified.strftime(DATE_FORMAT)}",
    ]
    if note.tags:
        lines.append("Tags: " + ", ".join(f"#{tag}" for tag in note.tags))
    lines.append(f"Words: {note.word_count}")
    lines.append("Content:")
    lines.append(note.content)
    lines.append(NOTE_RULE)
    lines.append("")
    return lines


def render_export(notes: Sequence[Note], now: datetime.datetime) -> str:
    """Render every note, in the given order, as a shareable text document.

    Args:
        notes: Notes to export (archived ones included)
        now: Timestamp written in the header

    Returns:
        The export text, newline terminated
    """
    lines = [
        "Notes export",
        f"Exported at: {now.strftime(DATE_FORMAT)}",
        f"Total notes: {len(notes)}",
        "",
        HEADER_RULE,
        "",
    ]
    for index, note in enumerate(notes, start=1):
        lines.extend(_render_note(index, note))
    return "\n".join(lines) + "\n"
