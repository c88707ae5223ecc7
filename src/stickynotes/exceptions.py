"""Custom exceptions for the sticky notes engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_ALREADY_EXISTS = 1003

    # Tag errors (3xxx)
    TAG_INVALID = 3002
    TAG_DUPLICATE = 3003
    TAG_LIMIT_REACHED = 3004

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    ENCODE_FAILED = 4010
    DECODE_FAILED = 4011
    COMPRESSION_FAILED = 4012

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class StickyNotesError(Exception):
    """Base exception for all sticky notes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(StickyNotesError):
    """Raised when a mutation references an unknown note id."""

    def __init__(self, note_id: str, operation: Optional[str] = None):
        details = {"note_id": note_id}
        if operation:
            details["operation"] = operation
        super().__init__(
            f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details=details
        )
        self.note_id = note_id
        self.operation = operation


class NoteAlreadyExistsError(StickyNotesError):
    """Raised when adding a note whose id is already in the collection."""

    def __init__(self, note_id: str):
        super().__init__(
            f"Note with ID '{note_id}' already exists",
            code=ErrorCode.NOTE_ALREADY_EXISTS,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class TagValidationError(StickyNotesError):
    """Raised when a tag is rejected by the note's tag rules."""

    def __init__(
        self,
        message: str,
        tag_name: Optional[str] = None,
        code: ErrorCode = ErrorCode.TAG_INVALID
    ):
        details = {}
        if tag_name is not None:
            details["tag_name"] = tag_name[:40]

        super().__init__(message, code=code, details=details)
        self.tag_name = tag_name


class StorageError(StickyNotesError):
    """Raised for key-value storage errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.key = key
        self.original_error = original_error


class EncodeError(StickyNotesError):
    """Raised when the note collection cannot be serialized."""

    def __init__(
        self,
        message: str,
        note_count: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if note_count is not None:
            details["note_count"] = note_count
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.ENCODE_FAILED, details=details)
        self.note_count = note_count
        self.original_error = original_error


class DecodeError(StickyNotesError):
    """Raised when stored bytes cannot be decoded into notes."""

    def __init__(
        self,
        message: str,
        byte_size: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if byte_size is not None:
            details["byte_size"] = byte_size
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.DECODE_FAILED, details=details)
        self.byte_size = byte_size
        self.original_error = original_error


class CompressionError(StickyNotesError):
    """Raised when compressing a payload fails. Always non-fatal."""

    def __init__(
        self,
        message: str,
        byte_size: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if byte_size is not None:
            details["byte_size"] = byte_size
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.COMPRESSION_FAILED, details=details)
        self.byte_size = byte_size
        self.original_error = original_error


class ConfigurationError(StickyNotesError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
