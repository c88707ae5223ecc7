"""Service layer owning the note collection."""

import datetime
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from stickynotes.exceptions import NoteAlreadyExistsError, NoteNotFoundError
from stickynotes.models.schema import (
    FilterState,
    Note,
    NotePriority,
    utc_now,
)
from stickynotes.observability import timed_operation, traced
from stickynotes.services.export import render_export
from stickynotes.services.query_engine import QueryEngine
from stickynotes.services.stats_cache import (
    CacheKey,
    CacheValue,
    DerivedStatsCache,
    NoteStatistics,
)
from stickynotes.storage.note_persistence import NotePersistence

logger = logging.getLogger(__name__)

# (epoch, key, value) produced by background precompute tasks
Completion = Tuple[int, CacheKey, CacheValue]

_SAMPLE_NOTES = (
    {
        "title": "Welcome to Sticky Notes",
        "content": (
            "This is your first note.\n\n"
            "You can:\n"
            "- create new notes\n"
            "- set a priority\n"
            "- add tags\n"
            "- favorite important notes\n"
            "- archive old notes"
        ),
        "priority": NotePriority.NORMAL,
        "tags": ["welcome"],
    },
    {
        "title": "Finding things",
        "content": (
            "Search looks at titles, content and tags.\n"
            "Filter by priority, favorites or a single tag, "
            "and sort by date, title, priority or length."
        ),
        "priority": NotePriority.LOW,
        "tags": ["tips"],
    },
)


@dataclass(frozen=True)
class HealthReport:
    """Outcome of ``NoteStore.health_check``."""

    storage_ok: bool
    total_notes: int
    valid_notes: int

    @property
    def empty_notes(self) -> int:
        return self.total_notes - self.valid_notes

    @property
    def healthy(self) -> bool:
        return self.storage_ok and self.empty_notes == 0


class NoteStore:
    """The single ordered note collection and its mutations.

    Every mutation drops the query memo and the derived-stats cache, then
    asks persistence for a background save of the post-mutation snapshot.
    The store is shared with the lifecycle timer thread, so all access goes
    through ``lock``.
    """

    def __init__(
        self,
        persistence: Optional[NotePersistence] = None,
        query_engine: Optional[QueryEngine] = None,
        stats_cache: Optional[DerivedStatsCache] = None,
    ):
        """Initialize the store.

        Args:
            persistence: Save/load backend. Without one the store is ephemeral.
            query_engine: Filter/sort memo. A fresh one by default.
            stats_cache: Derived-stats cache. A fresh one by default.
        """
        self.persistence = persistence
        self.query_engine = query_engine or QueryEngine()
        self.stats_cache = stats_cache or DerivedStatsCache()
        self.lock = threading.RLock()
        self.completions: "queue.Queue[Completion]" = queue.Queue()
        self._notes: List[Note] = []

    def __len__(self) -> int:
        with self.lock:
            return len(self._notes)

    @property
    def notes(self) -> List[Note]:
        """The collection in stored order (a shallow copy of the list)."""
        with self.lock:
            return list(self._notes)

    def snapshot(self) -> List[Note]:
        """Deep copy of the collection, safe to read from other threads."""
        with self.lock:
            return [note.model_copy(deep=True) for note in self._notes]

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def invalidate_caches(self) -> None:
        """Drop the query memo and every derived-stats entry."""
        self.query_engine.invalidate()
        self.stats_cache.invalidate_all()

    def save(self) -> Optional[Future]:
        """Request a background save of the current collection."""
        if self.persistence is None:
            return None
        with self.lock:
            return self.persistence.save(self._notes)

    def _commit(self) -> None:
        self.invalidate_caches()
        self.save()

    def _index_of(self, note_id: str, operation: str) -> int:
        for index, note in enumerate(self._notes):
            if note.id == note_id:
                return index
        logger.warning(f"{operation}: note {note_id} not found, nothing changed")
        raise NoteNotFoundError(note_id, operation=operation)

    # =========================================================================
    # Mutations
    # =========================================================================

    @traced("add_note")
    def add(self, note: Note) -> Note:
        """Append a note to the end of the collection."""
        with self.lock:
            if any(existing.id == note.id for existing in self._notes):
                raise NoteAlreadyExistsError(note.id)
            self._notes.append(note)
            self._commit()
            return note

    @traced("update_note")
    def update(self, note: Note) -> Note:
        """Replace the stored note with the same id and refresh its modified date.

        Raises:
            NoteNotFoundError: If no note has that id
        """
        with self.lock:
            index = self._index_of(note.id, "update")
            note.touch()
            self._notes[index] = note
            self._commit()
            return note

    @traced("delete_note")
    def delete(self, note_id: str) -> Note:
        """Remove a note and return it.

        Raises:
            NoteNotFoundError: If no note has that id
        """
        with self.lock:
            index = self._index_of(note_id, "delete")
            removed = self._notes.pop(index)
            self._commit()
            return removed

    @traced("delete_notes")
    def delete_many(self, note_ids: Iterable[str]) -> int:
        """Remove several notes with a single save. Unknown ids are skipped."""
        wanted = set(note_ids)
        with self.lock:
            kept = [note for note in self._notes if note.id not in wanted]
            removed = len(self._notes) - len(kept)
            missing = wanted - {note.id for note in self._notes}
            if missing:
                logger.warning(f"delete_many: {len(missing)} unknown note id(s) skipped")
            if removed:
                self._notes = kept
                self._commit()
            return removed

    @traced("clear_all")
    def clear_all(self) -> None:
        """Remove every note and wipe persisted notes, backup and settings."""
        with self.lock:
            count = len(self._notes)
            self._notes = []
            self.invalidate_caches()
            if self.persistence is not None:
                self.persistence.delete_all()
            logger.warning(f"Cleared all notes ({count} removed)")

    @traced("toggle_favorite")
    def toggle_favorite(self, note_id: str) -> Note:
        with self.lock:
            note = self._notes[self._index_of(note_id, "toggle_favorite")]
            note.is_favorite = not note.is_favorite
            note.touch()
            self._commit()
            return note

    @traced("toggle_archive")
    def toggle_archive(self, note_id: str) -> Note:
        with self.lock:
            note = self._notes[self._index_of(note_id, "toggle_archive")]
            note.is_archived = not note.is_archived
            note.touch()
            self._commit()
            return note

    @traced("add_tag")
    def add_tag(self, note_id: str, tag: str) -> str:
        """Attach a tag to a note.

        Returns:
            The tag as stored

        Raises:
            NoteNotFoundError: If no note has that id
            TagValidationError: If the tag breaks a tag rule
        """
        with self.lock:
            note = self._notes[self._index_of(note_id, "add_tag")]
            stored = note.add_tag(tag)
            self._commit()
            return stored

    @traced("remove_tag")
    def remove_tag(self, note_id: str, tag: str) -> bool:
        """Detach an exactly matching tag. Returns False if it was not there."""
        with self.lock:
            note = self._notes[self._index_of(note_id, "remove_tag")]
            if not note.remove_tag(tag):
                return False
            self._commit()
            return True

    def validate_and_repair(self, now: Optional[datetime.datetime] = None) -> int:
        """Repair every note in place. Saves when anything changed.

        Returns:
            Number of notes that needed a repair
        """
        now = now or utc_now()
        with self.lock, timed_operation("validate_and_repair", note_count=len(self._notes)) as op:
            repaired = sum(1 for note in self._notes if note.repair(now))
            op["repaired"] = repaired
            if repaired:
                logger.info(f"Repaired {repaired} of {len(self._notes)} notes")
                self._commit()
            return repaired

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, note_id: str) -> Optional[Note]:
        with self.lock:
            for note in self._notes:
                if note.id == note_id:
                    return note
            return None

    def filtered_notes(self, state: Optional[FilterState] = None) -> List[Note]:
        """Notes matching ``state`` (the default filter when omitted)."""
        state = state or FilterState()
        with self.lock, timed_operation("filtered_notes", sort=state.sort.value) as op:
            self.apply_completions()
            index = self.stats_cache.cached_sort_index(self._notes, state.sort)
            result = self.query_engine.filtered_notes(
                self._notes, state, order=index.note_ids if index is not None else None
            )
            op["presorted"] = index is not None
            op["result_count"] = len(result)
            return result

    def apply_completions(self) -> int:
        """Apply queued precompute results whose epoch is still current.

        Returns:
            Number of results stored in the cache
        """
        applied = 0
        while True:
            try:
                epoch, key, value = self.completions.get_nowait()
            except queue.Empty:
                break
            if self.stats_cache.put_if_current(epoch, key, value):
                applied += 1
        if applied:
            logger.debug(f"Applied {applied} precomputed cache entries")
        return applied

    def all_tags(self) -> List[str]:
        """Sorted distinct tags of non-archived notes."""
        with self.lock:
            self.apply_completions()
            return list(self.stats_cache.tag_list(self._notes).tags)

    def statistics(self) -> NoteStatistics:
        with self.lock:
            self.apply_completions()
            return self.stats_cache.statistics(self._notes)

    # =========================================================================
    # Loading, seeding, maintenance
    # =========================================================================

    def load(self) -> int:
        """Replace the collection with what persistence holds.

        Returns:
            Number of notes loaded
        """
        if self.persistence is None:
            return 0
        notes = self.persistence.load()
        with self.lock:
            self._notes = notes
            self.invalidate_caches()
        return len(notes)

    def seed_sample_notes(self) -> int:
        """Add the welcome notes to an empty collection. Returns notes added."""
        with self.lock:
            if self._notes:
                return 0
            now = utc_now()
            for sample in _SAMPLE_NOTES:
                self._notes.append(Note(date_created=now, date_modified=now, **sample))
            self._commit()
            logger.info(f"Seeded {len(_SAMPLE_NOTES)} sample notes")
            return len(_SAMPLE_NOTES)

    def health_check(self) -> HealthReport:
        """Probe storage and count notes that have a title or content."""
        storage_ok = self.persistence.health_check() if self.persistence else True
        with self.lock:
            total = len(self._notes)
            valid = sum(1 for note in self._notes if note.title or note.content)
        report = HealthReport(storage_ok=storage_ok, total_notes=total, valid_notes=valid)
        logger.info(
            f"Health check: storage_ok={storage_ok}, total={total}, "
            f"valid={valid}, empty={report.empty_notes}"
        )
        return report

    def export_text(self, now: Optional[datetime.datetime] = None) -> str:
        """Plain-text export of every note in stored order."""
        with self.lock:
            return render_export(self._notes, now or utc_now())
