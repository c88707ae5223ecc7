"""Bounded cache for values derived from the note collection.

Keys are small frozen dataclasses, each paired with exactly one result type:

    TagListKey   -> TagList         distinct tags of active notes
    StatsKey     -> NoteStatistics  active/favorite/archived counts, words
    SortIndexKey -> SortIndex       precomputed note order for a sort option

Entries expire after ``ttl`` seconds without access. When the cache grows
past ``max_entries`` the oldest insertions are dropped until ``trim_to``
remain. ``invalidate_all`` clears everything and bumps ``epoch`` so results
computed against an older snapshot can be recognised and discarded.
"""

import datetime
import logging
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from stickynotes.config import config
from stickynotes.models.schema import Note, NotePriority, SortOption
from stickynotes.services.query_engine import sort_notes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagListKey:
    collection_size: int


@dataclass(frozen=True)
class StatsKey:
    collection_size: int
    latest_modified: Optional[datetime.datetime]


@dataclass(frozen=True)
class SortIndexKey:
    sort: SortOption
    collection_size: int


@dataclass(frozen=True)
class TagList:
    tags: Tuple[str, ...]


@dataclass(frozen=True)
class NoteStatistics:
    """Aggregate counts. Favorites and words only count active notes."""

    active_count: int
    favorite_count: int
    archived_count: int
    total_words: int


@dataclass(frozen=True)
class SortIndex:
    note_ids: Tuple[str, ...]


CacheKey = Union[TagListKey, StatsKey, SortIndexKey]
CacheValue = Union[TagList, NoteStatistics, SortIndex]

_VALUE_TYPES: Dict[type, type] = {
    TagListKey: TagList,
    StatsKey: NoteStatistics,
    SortIndexKey: SortIndex,
}


def tag_list_key(notes: Sequence[Note]) -> TagListKey:
    return TagListKey(len(notes))


def stats_key(notes: Sequence[Note]) -> StatsKey:
    latest = max((n.date_modified for n in notes), default=None)
    return StatsKey(len(notes), latest)


def compute_tag_list(notes: Sequence[Note]) -> TagList:
    """Sorted distinct non-empty tags across non-archived notes."""
    tags = {tag for note in notes if not note.is_archived for tag in note.tags if tag}
    return TagList(tuple(sorted(tags)))


def compute_statistics(notes: Sequence[Note]) -> NoteStatistics:
    active = [n for n in notes if not n.is_archived]
    return NoteStatistics(
        active_count=len(active),
        favorite_count=sum(1 for n in active if n.is_favorite),
        archived_count=len(notes) - len(active),
        total_words=sum(n.word_count for n in active),
    )


def compute_sort_index(notes: Sequence[Note], option: SortOption) -> SortIndex:
    return SortIndex(tuple(n.id for n in sort_notes(notes, option)))


def tag_usage(notes: Sequence[Note], limit: Optional[int] = 10) -> List[Tuple[str, int]]:
    """Most used tags across ``notes``, most frequent first. ``limit=None`` keeps all."""
    counts = Counter(tag for note in notes for tag in note.tags)
    return counts.most_common(limit)


def priority_distribution(notes: Sequence[Note]) -> Dict[NotePriority, int]:
    """Number of notes per priority, every priority included."""
    counts = Counter(note.priority for note in notes)
    return {priority: counts.get(priority, 0) for priority in NotePriority}


def _check_pairing(key: CacheKey, value: CacheValue) -> None:
    expected = _VALUE_TYPES.get(type(key))
    if expected is None or not isinstance(value, expected):
        raise TypeError(f"{type(key).__name__} cannot hold {type(value).__name__}")


@dataclass
class _Entry:
    value: CacheValue
    last_access: float


class DerivedStatsCache:
    """Typed, bounded memo for tag lists, statistics and sort indexes."""

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
        trim_to: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl: Seconds since last access before an entry is purged
            max_entries: Size above which eviction trims the cache
            trim_to: Number of entries kept after a size trim
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl = config.cache_ttl_seconds if ttl is None else ttl
        self.max_entries = config.cache_max_entries if max_entries is None else max_entries
        self.trim_to = config.cache_trim_to if trim_to is None else trim_to
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._lock = threading.Lock()
        self.epoch = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: CacheKey) -> Optional[CacheValue]:
        """Return the cached value and refresh its access time."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.last_access = self._clock()
            return entry.value

    def put(self, key: CacheKey, value: CacheValue) -> None:
        """Store ``value`` under ``key`` as the newest insertion.

        Raises:
            TypeError: If the value type does not belong to the key type
        """
        _check_pairing(key, value)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value, self._clock())

    def put_if_current(self, epoch: int, key: CacheKey, value: CacheValue) -> bool:
        """Store only if no invalidation happened since ``epoch`` was read."""
        _check_pairing(key, value)
        with self._lock:
            if epoch != self.epoch:
                logger.debug(f"Dropping stale {type(key).__name__} (epoch {epoch} != {self.epoch})")
                return False
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value, self._clock())
            return True

    def evict(self) -> int:
        """Purge idle entries, then trim to size. Returns entries removed."""
        with self._lock:
            before = len(self._entries)
            cutoff = self._clock() - self.ttl
            for key in [k for k, e in self._entries.items() if e.last_access < cutoff]:
                del self._entries[key]
            if len(self._entries) > self.max_entries:
                while len(self._entries) > self.trim_to:
                    self._entries.popitem(last=False)
            removed = before - len(self._entries)
        if removed:
            logger.debug(f"Evicted {removed} derived-stats entries")
        return removed

    def invalidate_all(self) -> None:
        """Clear every entry and start a new epoch."""
        with self._lock:
            self._entries.clear()
            self.epoch += 1

    # Typed accessors

    def tag_list(self, notes: Sequence[Note]) -> TagList:
        key = tag_list_key(notes)
        cached = self.get(key)
        if isinstance(cached, TagList):
            return cached
        value = compute_tag_list(notes)
        self.put(key, value)
        return value

    def statistics(self, notes: Sequence[Note]) -> NoteStatistics:
        key = stats_key(notes)
        cached = self.get(key)
        if isinstance(cached, NoteStatistics):
            return cached
        value = compute_statistics(notes)
        self.put(key, value)
        return value

    def cached_sort_index(self, notes: Sequence[Note], option: SortOption) -> Optional[SortIndex]:
        """The stored order for ``option``, without computing one on a miss."""
        cached = self.get(SortIndexKey(option, len(notes)))
        return cached if isinstance(cached, SortIndex) else None

    def sort_index(self, notes: Sequence[Note], option: SortOption) -> SortIndex:
        key = SortIndexKey(option, len(notes))
        cached = self.get(key)
        if isinstance(cached, SortIndex):
            return cached
        value = compute_sort_index(notes, option)
        self.put(key, value)
        return value
