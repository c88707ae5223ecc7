"""Logging setup and per-operation timing for the sticky notes engine.

Persistence outcomes are only ever reported here, never through return
values, so the log file and the metrics file are the engine's audit trail.
"""
import functools
import json
import logging
import re
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".stickynotes" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".stickynotes" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])

_WHITESPACE_RE = re.compile(r"\s+")


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the ``stickynotes`` logger.

    Args:
        log_dir: Directory for ``stickynotes.log``. Defaults to ~/.stickynotes/logs/
        level: Level for the package logger and its handlers
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files kept
        console: Also log to stderr, unless a stream handler is already attached

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("stickynotes")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "stickynotes.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    has_stream = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    )
    if console and not has_stream:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        package_logger.addHandler(stream_handler)

    package_logger.info(f"Logging to {log_file} (rotating at {max_bytes} bytes, {backup_count} kept)")
    return log_path


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to persist in the metrics file.

    Replaces the home directory with ``~``, collapses whitespace (including
    newlines) and truncates to ``max_length`` characters.
    """
    if message is None:
        return None
    cleaned = message.replace(str(Path.home()), "~")
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def record(self, duration_ms: float, error: Optional[str] = None, failed: bool = False) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        if failed:
            self.error_count += 1
            self.last_error = _sanitize_error_message(error)
            self.last_error_at = datetime.now(timezone.utc)

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.count - self.error_count,
            "error_count": self.error_count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.min_ms is not None else None,
            "max_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Thread-safe timing and error counts per operation name.

    Operations are recorded by ``timed_operation``. The totals can be
    written to a JSON file, either explicitly or every
    ``auto_save_interval`` recorded operations.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 0,
    ):
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._started_at = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            self._operations[operation].record(duration_ms, error, failed=not success)
            self._unsaved += 1
            if self._auto_save_interval > 0 and self._unsaved >= self._auto_save_interval:
                self._write()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation totals as plain dicts, keyed by operation name."""
        with self._lock:
            return self._snapshot()

    def summary(self) -> Dict[str, Any]:
        """Totals across all operations, for health reporting."""
        with self._lock:
            total = sum(m.count for m in self._operations.values())
            errors = sum(m.error_count for m in self._operations.values())
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._started_at).total_seconds(),
                "total_operations": total,
                "total_errors": errors,
                "operations_tracked": sorted(self._operations),
            }

    def save_metrics(self) -> bool:
        """Write the totals to the metrics file. Returns False on failure."""
        with self._lock:
            return self._write()

    def _snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: m.to_dict() for name, m in self._operations.items()}

    def _write(self) -> bool:
        # Caller holds self._lock
        data = {
            "started_at": self._started_at.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self._snapshot(),
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start and end at DEBUG.

    Yields a dict the block can fill with result details (``result_count``
    and the like); they are appended to the END log line.

        with timed_operation("filtered_notes", sort="title") as op:
            op["result_count"] = len(results)
    """
    ref = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {"correlation_id": ref}
    logger.debug(
        f"[{ref}] START {operation} ({', '.join(f'{k}={v}' for k, v in context.items())})"
    )
    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield details
    except Exception as e:
        error = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error is None, error)
        extra = ", ".join(f"{k}={v}" for k, v in details.items() if k != "correlation_id")
        status = "OK" if error is None else f"ERROR: {error}"
        logger.debug(f"[{ref}] END {operation} ({duration_ms:.2f}ms) [{status}] {extra}")


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Wrap a NoteStore-style method in ``timed_operation``.

    A ``note_id`` keyword, or a string first argument after ``self``, is
    added to the log context.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if "note_id" in kwargs:
                context["note_id"] = kwargs["note_id"]
            elif len(args) > 1 and isinstance(args[1], str):
                context["note_id"] = args[1]

            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op["result_count"] = len(result)
                elif result is not None:
                    op["has_result"] = True
                return result

        return wrapper  # type: ignore
    return decorator
