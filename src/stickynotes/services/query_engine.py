"""Filter/sort pipeline over the note collection with a single-entry memo."""

import locale
import logging
from typing import Dict, List, Optional, Sequence

from stickynotes.models.schema import FilterState, Note, SortOption

logger = logging.getLogger(__name__)

# Never equal to any real fingerprint
_INVALID = object()


def _title_key(note: Note) -> str:
    return locale.strxfrm(note.title.casefold())


# (key, descending) per sort option. Python's sort is stable in both
# directions, so ties keep their collection order.
_SORT_KEYS: Dict[SortOption, tuple] = {
    SortOption.DATE_MODIFIED: (lambda n: n.date_modified, True),
    SortOption.DATE_CREATED: (lambda n: n.date_created, True),
    SortOption.TITLE: (_title_key, False),
    SortOption.PRIORITY: (lambda n: n.priority.weight, True),
    SortOption.WORD_COUNT: (lambda n: n.word_count, True),
}


def sort_notes(notes: Sequence[Note], option: SortOption) -> List[Note]:
    """Return ``notes`` ordered by ``option``."""
    key, descending = _SORT_KEYS[option]
    return sorted(notes, key=key, reverse=descending)


def _matches_search(note: Note, needle: str) -> bool:
    return (
        needle in note.title.lower()
        or needle in note.content.lower()
        or any(needle in tag.lower() for tag in note.tags)
    )


def _apply_order(notes: Sequence[Note], order: Optional[Sequence[str]]) -> Optional[List[Note]]:
    """Reorder ``notes`` by id, or None if ``order`` does not cover them exactly."""
    if order is None or len(order) != len(notes):
        return None
    by_id = {note.id: note for note in notes}
    if len(by_id) != len(notes):
        return None
    try:
        return [by_id[note_id] for note_id in order]
    except KeyError:
        return None


def apply_filters(notes: Sequence[Note], state: FilterState) -> List[Note]:
    """Run the filter chain, cheapest predicates first.

    archived flag -> priority -> favorites -> tag -> full-text search
    """
    filtered = [n for n in notes if n.is_archived == state.show_archived]
    if state.priority is not None:
        filtered = [n for n in filtered if n.priority == state.priority]
    if state.favorites_only:
        filtered = [n for n in filtered if n.is_favorite]
    if state.tag is not None:
        filtered = [n for n in filtered if state.tag in n.tags]
    if state.search_text:
        needle = state.search_text.lower()
        filtered = [n for n in filtered if _matches_search(n, needle)]
    return filtered


class QueryEngine:
    """Computes filtered views and memoizes the most recent one.

    The memo is keyed by ``FilterState.fingerprint``, which only includes the
    collection size. In-place edits are therefore invisible to it, and every
    mutation of the collection must call ``invalidate()``.
    """

    def __init__(self) -> None:
        self._fingerprint: object = _INVALID
        self._cached: Optional[List[Note]] = None
        self.hits = 0
        self.misses = 0

    def filtered_notes(
        self,
        notes: Sequence[Note],
        state: FilterState,
        order: Optional[Sequence[str]] = None,
    ) -> List[Note]:
        """Return the notes matching ``state`` in the requested order.

        Args:
            notes: The whole collection
            state: Filters and sort option
            order: Precomputed ids of the whole collection in ``state.sort``
                order. Filtering keeps relative order, so a stable sort of the
                collection narrowed by the filters equals the filtered sort.
        """
        fingerprint = state.fingerprint(len(notes))
        if fingerprint == self._fingerprint and self._cached is not None:
            self.hits += 1
            return list(self._cached)

        self.misses += 1
        ordered = _apply_order(notes, order)
        if ordered is not None:
            result = apply_filters(ordered, state)
        else:
            result = sort_notes(apply_filters(notes, state), state.sort)
        self._cached = result
        self._fingerprint = fingerprint
        logger.debug(f"Recomputed filtered notes: {len(result)} of {len(notes)}")
        return list(result)

    def invalidate(self) -> None:
        """Drop the memo so the next read recomputes."""
        self._fingerprint = _INVALID
        self._cached = None

    @property
    def cached_size(self) -> int:
        """Number of notes held by the memo (0 when empty)."""
        return len(self._cached) if self._cached is not None else 0
