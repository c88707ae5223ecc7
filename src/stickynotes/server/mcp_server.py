"""MCP server exposing the sticky notes engine."""

import logging
import uuid
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from stickynotes.config import config
from stickynotes.exceptions import StickyNotesError
from stickynotes.models.schema import (
    UNTITLED_TITLE,
    DisplaySettings,
    FilterState,
    Note,
    NotePriority,
    SortOption,
)
from stickynotes.observability import metrics, timed_operation
from stickynotes.services.note_store import NoteStore
from stickynotes.services.stats_cache import priority_distribution, tag_usage

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB
PREVIEW_LENGTH = 60


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _split_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]


def _format_note_line(note: Note) -> str:
    markers = ""
    if note.is_favorite:
        markers += "*"
    if note.is_archived:
        markers += " (archived)"
    preview = note.content.replace("\n", " ")
    if len(preview) > PREVIEW_LENGTH:
        preview = preview[:PREVIEW_LENGTH] + "..."
    line = f"- [{note.priority.value}] {note.title or UNTITLED_TITLE}{markers} (ID: {note.id})"
    if note.tags:
        line += " " + " ".join(f"#{t}" for t in note.tags)
    return f"{line}\n  {preview}"


def format_listing(notes: List[Note]) -> str:
    if not notes:
        return "No notes."
    lines = [f"{len(notes)} note(s):"]
    lines.extend(_format_note_line(note) for note in notes)
    return "\n".join(lines)


class StickyNotesMcpServer:
    """MCP server for the sticky notes engine."""

    def __init__(self, store: NoteStore):
        """Initialize the MCP server.

        Args:
            store: Loaded note store the tools operate on
        """
        self.mcp = FastMCP(config.server_name)
        self.store = store
        self._register_tools()
        logger.info("Sticky notes MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, StickyNotesError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _with_listing(self, message: str) -> str:
        """Append the default view so consumers always see the refreshed state."""
        return f"{message}\n\n{format_listing(self.store.filtered_notes(FilterState()))}"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="sn_add_note")
        def sn_add_note(
            content: str,
            title: str = "",
            priority: str = "normal",
            tags: Optional[str] = None,
        ) -> str:
            """Create a new sticky note.
            Args:
                content: Body of the note
                title: Optional title
                priority: low, normal or high
                tags: Comma-separated list of tags (optional)
            """
            with timed_operation("sn_add_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    try:
                        priority_enum = NotePriority(priority.lower())
                    except ValueError:
                        return f"Invalid priority: {priority}. Valid priorities are: {', '.join(p.value for p in NotePriority)}"
                    note = Note(title=title, content=content, priority=priority_enum)
                    for tag in _split_tags(tags):
                        note.add_tag(tag)
                    self.store.add(note)
                    op["note_id"] = note.id
                    return self._with_listing(f"Note created with ID: {note.id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_update_note")
        def sn_update_note(
            note_id: str,
            title: Optional[str] = None,
            content: Optional[str] = None,
            priority: Optional[str] = None,
        ) -> str:
            """Update the title, content or priority of a note.
            Args:
                note_id: ID of the note
                title: New title (optional)
                content: New content (optional)
                priority: New priority: low, normal or high (optional)
            """
            with timed_operation("sn_update_note", note_id=note_id):
                try:
                    _validate_input_lengths(title=title, content=content)
                    existing = self.store.get(note_id)
                    if existing is None:
                        return f"Note not found: {note_id}"
                    updates = {}
                    if title is not None:
                        updates["title"] = title
                    if content is not None:
                        updates["content"] = content
                    if priority is not None:
                        try:
                            updates["priority"] = NotePriority(priority.lower())
                        except ValueError:
                            return f"Invalid priority: {priority}. Valid priorities are: {', '.join(p.value for p in NotePriority)}"
                    updated = Note.model_validate({**existing.model_dump(), **updates})
                    self.store.update(updated)
                    return self._with_listing(f"Note updated: {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_delete_note")
        def sn_delete_note(note_id: str) -> str:
            """Delete a note.
            Args:
                note_id: ID of the note to delete
            """
            with timed_operation("sn_delete_note", note_id=note_id):
                try:
                    self.store.delete(note_id)
                    return self._with_listing(f"Note deleted: {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_toggle_favorite")
        def sn_toggle_favorite(note_id: str) -> str:
            """Favorite or unfavorite a note.
            Args:
                note_id: ID of the note
            """
            with timed_operation("sn_toggle_favorite", note_id=note_id):
                try:
                    note = self.store.toggle_favorite(note_id)
                    state = "favorited" if note.is_favorite else "unfavorited"
                    return self._with_listing(f"Note {state}: {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_toggle_archive")
        def sn_toggle_archive(note_id: str) -> str:
            """Archive or restore a note.
            Args:
                note_id: ID of the note
            """
            with timed_operation("sn_toggle_archive", note_id=note_id):
                try:
                    note = self.store.toggle_archive(note_id)
                    state = "archived" if note.is_archived else "restored"
                    return self._with_listing(f"Note {state}: {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_add_tag")
        def sn_add_tag(note_id: str, tag: str) -> str:
            """Add a tag to a note.
            Args:
                note_id: ID of the note
                tag: Tag name (no '#', no spaces, at most 20 characters)
            """
            with timed_operation("sn_add_tag", note_id=note_id):
                try:
                    stored = self.store.add_tag(note_id, tag)
                    return self._with_listing(f"Tag '{stored}' added to {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_remove_tag")
        def sn_remove_tag(note_id: str, tag: str) -> str:
            """Remove a tag from a note.
            Args:
                note_id: ID of the note
                tag: Exact tag name
            """
            with timed_operation("sn_remove_tag", note_id=note_id):
                try:
                    if not self.store.remove_tag(note_id, tag):
                        return f"Note {note_id} has no tag '{tag}'"
                    return self._with_listing(f"Tag '{tag}' removed from {note_id}")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_get_note")
        def sn_get_note(note_id: str) -> str:
            """Retrieve a note by ID.
            Args:
                note_id: ID of the note
            """
            with timed_operation("sn_get_note", note_id=note_id) as op:
                try:
                    note = self.store.get(note_id)
                    if note is None:
                        op["found"] = False
                        return f"Note not found: {note_id}"
                    op["found"] = True
                    result = f"# {note.title or UNTITLED_TITLE}\n"
                    result += f"ID: {note.id}\n"
                    result += f"Priority: {note.priority.value}\n"
                    result += f"Favorite: {'yes' if note.is_favorite else 'no'}\n"
                    result += f"Archived: {'yes' if note.is_archived else 'no'}\n"
                    result += f"Created: {note.date_created.isoformat()}\n"
                    result += f"Modified: {note.date_modified.isoformat()}\n"
                    if note.tags:
                        result += f"Tags: {', '.join(note.tags)}\n"
                    if note.reminder_date:
                        result += f"Reminder: {note.reminder_date.isoformat()}\n"
                    result += f"Words: {note.word_count}\n"
                    result += f"\n{note.content}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_list_notes")
        def sn_list_notes(
            show_archived: bool = False,
            search: str = "",
            priority: Optional[str] = None,
            favorites_only: bool = False,
            tag: Optional[str] = None,
            sort: str = "date_modified",
        ) -> str:
            """List notes through the filter chain.
            Args:
                show_archived: List archived notes instead of active ones
                search: Case-insensitive text matched against title, content and tags
                priority: Only notes with this priority (low, normal, high)
                favorites_only: Only favorite notes
                tag: Only notes carrying exactly this tag
                sort: date_modified, date_created, title, priority or word_count
            """
            with timed_operation("sn_list_notes") as op:
                try:
                    try:
                        sort_option = SortOption(sort.lower())
                    except ValueError:
                        return f"Invalid sort: {sort}. Valid options are: {', '.join(s.value for s in SortOption)}"
                    priority_enum = None
                    if priority:
                        try:
                            priority_enum = NotePriority(priority.lower())
                        except ValueError:
                            return f"Invalid priority: {priority}. Valid priorities are: {', '.join(p.value for p in NotePriority)}"
                    state = FilterState(
                        show_archived=show_archived,
                        search_text=search,
                        priority=priority_enum,
                        favorites_only=favorites_only,
                        tag=tag or None,
                        sort=sort_option,
                    )
                    notes = self.store.filtered_notes(state)
                    op["result_count"] = len(notes)
                    return format_listing(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_list_tags")
        def sn_list_tags() -> str:
            """List the distinct tags of active notes with usage counts."""
            with timed_operation("sn_list_tags") as op:
                try:
                    tags = self.store.all_tags()
                    op["result_count"] = len(tags)
                    if not tags:
                        return "No tags."
                    active = [note for note in self.store.notes if not note.is_archived]
                    usage = dict(tag_usage(active, limit=None))
                    lines = [f"{len(tags)} tag(s):"]
                    lines.extend(f"- #{tag} ({usage.get(tag, 0)})" for tag in tags)
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_statistics")
        def sn_statistics() -> str:
            """Show note counts, word totals, priority spread and top tags."""
            with timed_operation("sn_statistics"):
                try:
                    stats = self.store.statistics()
                    notes = self.store.notes
                    output = "Note statistics:\n"
                    output += f"- Active notes: {stats.active_count}\n"
                    output += f"- Favorites: {stats.favorite_count}\n"
                    output += f"- Archived notes: {stats.archived_count}\n"
                    output += f"- Total words: {stats.total_words}\n"
                    output += "\nBy priority:\n"
                    for priority, count in priority_distribution(notes).items():
                        output += f"- {priority.value}: {count}\n"
                    top = tag_usage(notes)
                    if top:
                        output += "\nTop tags:\n"
                        for tag, count in top:
                            output += f"- #{tag}: {count}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_export")
        def sn_export() -> str:
            """Export every note as plain text."""
            with timed_operation("sn_export"):
                try:
                    return self.store.export_text()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_repair")
        def sn_repair() -> str:
            """Repair empty titles, empty content, bad dates and malformed tags."""
            with timed_operation("sn_repair") as op:
                try:
                    repaired = self.store.validate_and_repair()
                    op["repaired"] = repaired
                    return self._with_listing(f"Repaired {repaired} note(s)")
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_health_check")
        def sn_health_check() -> str:
            """Check storage and note integrity, with operation metrics."""
            with timed_operation("sn_health_check"):
                try:
                    report = self.store.health_check()
                    summary = metrics.summary()
                    output = "Health check:\n"
                    output += f"- Storage: {'OK' if report.storage_ok else 'FAILED'}\n"
                    output += f"- Total notes: {report.total_notes}\n"
                    output += f"- Valid notes: {report.valid_notes}\n"
                    output += f"- Empty notes: {report.empty_notes}\n"
                    output += f"- Operations: {summary['total_operations']} "
                    output += f"({summary['total_errors']} errors)\n"
                    output += f"- Uptime: {summary['uptime_seconds']:.0f}s\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="sn_set_dark_mode")
        def sn_set_dark_mode(enabled: bool) -> str:
            """Persist the dark mode display setting.
            Args:
                enabled: True for dark mode
            """
            with timed_operation("sn_set_dark_mode", enabled=enabled):
                try:
                    if self.store.persistence is None:
                        return "Error: No persistence configured"
                    self.store.persistence.save_settings(DisplaySettings(dark_mode=enabled))
                    return f"Dark mode {'enabled' if enabled else 'disabled'}"
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
