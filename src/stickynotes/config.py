"""Configuration module for the sticky notes engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from stickynotes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the note database
_USER_ENV = Path.home() / ".stickynotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Storage keys shared by every key-value backend
PRIMARY_KEY = "SavedNotes"
BACKUP_KEY = "SavedNotesBackup"
DARK_MODE_KEY = "isDarkMode"

_MIB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class StickyNotesConfig(BaseModel):
    """Configuration for the sticky notes engine."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("STICKYNOTES_BASE_DIR", "."))
    )
    # Key-value store database
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("STICKYNOTES_DATABASE_PATH", "data/db/stickynotes.db")
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("STICKYNOTES_SERVER_NAME", "stickynotes"))
    server_version: str = Field(default=__version__)

    # Persistence: payloads larger than this are zlib-compressed
    compression_threshold: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_COMPRESSION_THRESHOLD", _MIB)
    )
    # Worker threads for background saves
    save_workers: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_SAVE_WORKERS", 2)
    )

    # Derived-stats cache bounds
    cache_ttl_seconds: float = Field(
        default_factory=lambda: _env_float("STICKYNOTES_CACHE_TTL", 300.0)
    )
    cache_max_entries: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_CACHE_MAX_ENTRIES", 50)
    )
    cache_trim_to: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_CACHE_TRIM_TO", 30)
    )

    # Lifecycle
    sweep_interval_seconds: float = Field(
        default_factory=lambda: _env_float("STICKYNOTES_SWEEP_INTERVAL", 30.0)
    )
    full_clear_every: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_FULL_CLEAR_EVERY", 10)
    )
    memory_threshold_bytes: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_MEMORY_THRESHOLD", 100 * _MIB)
    )
    query_cache_max_results: int = Field(
        default_factory=lambda: _env_int("STICKYNOTES_QUERY_CACHE_MAX_RESULTS", 100)
    )
    foreground_refresh_after_seconds: float = Field(
        default_factory=lambda: _env_float("STICKYNOTES_FOREGROUND_REFRESH_AFTER", 600.0)
    )

    # Seed two welcome notes when the store is empty on first launch
    seed_sample_notes: bool = Field(
        default_factory=lambda: os.getenv("STICKYNOTES_SEED_SAMPLES", "false").lower()
        in ("true", "1", "yes")
    )

    @model_validator(mode="after")
    def _validate_cache_config(self) -> "StickyNotesConfig":
        """Validate cache bounds and intervals."""
        if self.cache_max_entries < 1:
            raise ValueError("cache_max_entries must be >= 1")
        if not 0 <= self.cache_trim_to < self.cache_max_entries:
            raise ValueError("cache_trim_to must be in [0, cache_max_entries)")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        if self.full_clear_every < 1:
            raise ValueError("full_clear_every must be >= 1")
        if self.save_workers < 1:
            raise ValueError("save_workers must be >= 1")
        if self.memory_threshold_bytes < 16 * _MIB:
            logger.warning(
                "memory_threshold_bytes=%d is very low; every sweep will "
                "trigger an aggressive cleanup",
                self.memory_threshold_bytes,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self, path: Optional[Path] = None) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(path or self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = StickyNotesConfig()
