"""Data models for the sticky notes engine."""

import datetime
import logging
import unicodedata
import uuid
from datetime import timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from stickynotes.exceptions import ErrorCode, TagValidationError

logger = logging.getLogger(__name__)

# Placeholders written by repair (and by permissive decoding for titles)
UNTITLED_TITLE = "Untitled"
EMPTY_CONTENT = "Empty note"

MAX_TAG_LENGTH = 20
MAX_TAGS_PER_NOTE = 10


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a random, stable note identifier (UUID4, canonical form)."""
    return str(uuid.uuid4())


class NotePriority(str, Enum):
    """Priority of a note."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def weight(self) -> int:
        """Sort weight: high=3, normal=2, low=1."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    NotePriority.LOW: 1,
    NotePriority.NORMAL: 2,
    NotePriority.HIGH: 3,
}


class SortOption(str, Enum):
    """Orderings supported by the query engine."""

    DATE_MODIFIED = "date_modified"  # Newest edit first
    DATE_CREATED = "date_created"  # Newest first
    TITLE = "title"  # A-Z, locale-aware, case-insensitive
    PRIORITY = "priority"  # High first, stable within a priority
    WORD_COUNT = "word_count"  # Longest first


def validate_tag(tag: str, existing: List[str]) -> str:
    """Validate a tag against the tags already on a note.

    Rules: trimmed, 1-20 characters, no '#', no whitespace or control
    characters, case-insensitively unique, at most 10 tags per note.

    Args:
        tag: The raw tag text
        existing: Tags already attached to the note

    Returns:
        The trimmed tag

    Raises:
        TagValidationError: If any rule is violated
    """
    trimmed = tag.strip() if isinstance(tag, str) else ""
    if not trimmed:
        raise TagValidationError("Tag cannot be empty", tag_name=tag)
    if len(trimmed) > MAX_TAG_LENGTH:
        raise TagValidationError(
            f"Tag exceeds maximum length of {MAX_TAG_LENGTH} characters",
            tag_name=trimmed,
        )
    if "#" in trimmed:
        raise TagValidationError("Tag cannot contain '#'", tag_name=trimmed)
    if any(c.isspace() or unicodedata.category(c) == "Cc" for c in trimmed):
        raise TagValidationError(
            "Tag cannot contain whitespace or control characters", tag_name=trimmed
        )
    lowered = trimmed.lower()
    if any(t.lower() == lowered for t in existing):
        raise TagValidationError(
            f"Tag '{trimmed}' already exists on this note",
            tag_name=trimmed,
            code=ErrorCode.TAG_DUPLICATE,
        )
    if len(existing) >= MAX_TAGS_PER_NOTE:
        raise TagValidationError(
            f"A note can have at most {MAX_TAGS_PER_NOTE} tags",
            tag_name=trimmed,
            code=ErrorCode.TAG_LIMIT_REACHED,
        )
    return trimmed


def clean_tags(tags: List[str]) -> List[str]:
    """Trim, drop empty or over-long tags and dedupe case-insensitively.

    The first spelling of a duplicated tag wins and order is preserved.
    """
    seen = set()
    cleaned = []
    for tag in tags:
        trimmed = tag.strip()
        if not trimmed or len(trimmed) > MAX_TAG_LENGTH:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(trimmed)
    return cleaned


class Note(BaseModel):
    """A single sticky note."""

    id: str = Field(
        default_factory=generate_id, frozen=True, description="Stable unique ID"
    )
    title: str = Field(default="", description="Title of the note (trimmed)")
    content: str = Field(..., description="Body of the note (trimmed)")
    date_created: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    date_modified: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last modified (UTC)"
    )
    priority: NotePriority = Field(default=NotePriority.NORMAL)
    is_favorite: bool = Field(default=False)
    is_archived: bool = Field(default=False)
    tags: List[str] = Field(default_factory=list, description="Ordered tag names")
    reminder_date: Optional[datetime.datetime] = Field(default=None)

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is a UUID and normalize it."""
        try:
            return str(uuid.UUID(v))
        except (ValueError, AttributeError, TypeError):
            raise ValueError(f"Note ID must be a UUID, got {v!r}")

    @field_validator("title", "content")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("date_created", "date_modified")
    @classmethod
    def validate_dates(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @field_validator("reminder_date")
    @classmethod
    def validate_reminder(
        cls, v: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        return None if v is None else ensure_timezone_aware(v)

    @model_validator(mode="after")
    def _order_dates(self) -> "Note":
        """Keep date_modified >= date_created."""
        if self.date_modified < self.date_created:
            # Bypass validate_assignment to avoid re-entering this validator
            self.__dict__["date_modified"] = self.date_created
        return self

    @property
    def word_count(self) -> int:
        """Number of whitespace-delimited tokens in the content."""
        return len(self.content.split())

    def touch(self, now: Optional[datetime.datetime] = None) -> None:
        """Refresh the modification timestamp."""
        self.date_modified = now or utc_now()

    def add_tag(self, tag: str) -> str:
        """Validate and append a tag.

        Returns:
            The tag as stored (trimmed)

        Raises:
            TagValidationError: If the tag breaks a tag rule
        """
        trimmed = validate_tag(tag, self.tags)
        self.tags.append(trimmed)
        self.touch()
        return trimmed

    def remove_tag(self, tag: str) -> bool:
        """Remove an exactly matching tag. Returns True if it was present."""
        if tag not in self.tags:
            return False
        self.tags = [t for t in self.tags if t != tag]
        self.touch()
        return True

    def repair(self, now: Optional[datetime.datetime] = None) -> bool:
        """Fix title, dates, tags and content in place.

        Returns:
            True if anything was changed.
        """
        now = now or utc_now()
        changed = False

        trimmed_title = self.title.strip()
        if not trimmed_title:
            self.title = UNTITLED_TITLE
            changed = True
        elif trimmed_title != self.title:
            self.title = trimmed_title
            changed = True

        if self.date_created > now:
            self.date_created = now
            changed = True
        if self.date_modified < self.date_created:
            self.date_modified = self.date_created
            changed = True

        cleaned = clean_tags(self.tags)
        if cleaned != self.tags:
            self.tags = cleaned
            changed = True

        if not self.content.strip():
            self.content = EMPTY_CONTENT
            changed = True

        return changed

    def to_record(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: Any) -> "Note":
        """Decode a stored record, defaulting any field that fails to decode.

        Only the ``id`` is mandatory: a record without a valid UUID raises
        ValueError, which fails the whole payload.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Note record must be an object, got {type(record).__name__}")
        raw_id = record.get("id")
        try:
            note_id = str(uuid.UUID(str(raw_id)))
        except (ValueError, AttributeError, TypeError) as e:
            raise ValueError(f"Invalid note id: {raw_id!r}") from e

        values: Dict[str, Any] = {"id": note_id}
        for name, (adapter, default) in _DECODE_FIELDS.items():
            if name not in record:
                values[name] = default()
                continue
            try:
                values[name] = adapter.validate_python(record[name])
            except PydanticValidationError:
                logger.debug(f"Field '{name}' of note {note_id} failed to decode; using default")
                values[name] = default()
        return cls(**values)


# Per-field decoders and defaults used by Note.from_record
_DECODE_FIELDS: Dict[str, Tuple[TypeAdapter, Callable[[], Any]]] = {
    "title": (TypeAdapter(str), lambda: UNTITLED_TITLE),
    "content": (TypeAdapter(str), lambda: ""),
    "date_created": (TypeAdapter(datetime.datetime), utc_now),
    "date_modified": (TypeAdapter(datetime.datetime), utc_now),
    "priority": (TypeAdapter(NotePriority), lambda: NotePriority.NORMAL),
    "is_favorite": (TypeAdapter(bool), lambda: False),
    "is_archived": (TypeAdapter(bool), lambda: False),
    "tags": (TypeAdapter(List[str]), list),
    "reminder_date": (TypeAdapter(Optional[datetime.datetime]), lambda: None),
}


class FilterState(BaseModel):
    """Transient filter and sort selection for a query. Never persisted."""

    show_archived: bool = Field(default=False, description="Show archived notes instead of active ones")
    search_text: str = Field(default="", description="Case-insensitive substring")
    priority: Optional[NotePriority] = Field(default=None)
    favorites_only: bool = Field(default=False)
    tag: Optional[str] = Field(default=None, description="Exact, case-sensitive tag")
    sort: SortOption = Field(default=SortOption.DATE_MODIFIED)

    model_config = {"frozen": True, "extra": "forbid"}

    def fingerprint(self, collection_size: int) -> Tuple[Any, ...]:
        """Memo key for the query engine."""
        return (
            self.show_archived,
            self.search_text,
            self.priority,
            self.favorites_only,
            self.tag,
            self.sort,
            collection_size,
        )


class DisplaySettings(BaseModel):
    """Persisted display preferences."""

    dark_mode: bool = Field(default=False)
