"""Tests for configuration loading and the command line overrides."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from stickynotes.config import _USER_ENV, StickyNotesConfig
from stickynotes.exceptions import ConfigurationError, ErrorCode
from stickynotes.main import parse_args, update_config


class TestStickyNotesConfig:
    """Tests for StickyNotesConfig."""

    def test_defaults(self, monkeypatch):
        for name in (
            "STICKYNOTES_COMPRESSION_THRESHOLD",
            "STICKYNOTES_CACHE_TTL",
            "STICKYNOTES_CACHE_MAX_ENTRIES",
            "STICKYNOTES_CACHE_TRIM_TO",
            "STICKYNOTES_SWEEP_INTERVAL",
            "STICKYNOTES_MEMORY_THRESHOLD",
        ):
            monkeypatch.delenv(name, raising=False)
        cfg = StickyNotesConfig()
        assert cfg.compression_threshold == 1024 * 1024
        assert cfg.cache_ttl_seconds == 300
        assert cfg.cache_max_entries == 50
        assert cfg.cache_trim_to == 30
        assert cfg.sweep_interval_seconds == 30
        assert cfg.full_clear_every == 10
        assert cfg.memory_threshold_bytes == 100 * 1024 * 1024
        assert cfg.foreground_refresh_after_seconds == 600

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STICKYNOTES_CACHE_MAX_ENTRIES", "80")
        monkeypatch.setenv("STICKYNOTES_SEED_SAMPLES", "yes")
        cfg = StickyNotesConfig()
        assert cfg.cache_max_entries == 80
        assert cfg.seed_sample_notes is True

    def test_trim_must_be_below_max(self):
        with pytest.raises(ValidationError):
            StickyNotesConfig(cache_max_entries=10, cache_trim_to=10)

    def test_sweep_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            StickyNotesConfig(sweep_interval_seconds=0)

    def test_db_url_creates_parent(self, test_config):
        url = test_config.get_db_url()
        assert url.startswith("sqlite:///")
        assert test_config.get_absolute_path(test_config.database_path).parent.is_dir()

    def test_absolute_path_untouched(self):
        cfg = StickyNotesConfig(base_dir=Path("/base"))
        assert cfg.get_absolute_path(Path("/abs/db.sqlite")) == Path("/abs/db.sqlite")
        assert cfg.get_absolute_path(Path("rel.db")) == Path("/base/rel.db")

    def test_user_env_location(self):
        assert _USER_ENV == Path.home() / ".stickynotes" / ".env"


class TestCommandLine:
    """Tests for main.parse_args/update_config."""

    def test_database_path_override(self, test_config, tmp_path):
        target = tmp_path / "cli.db"
        update_config(parse_args(["--database-path", str(target)]))
        assert test_config.database_path == target

    def test_invalid_override_raises_configuration_error(self, test_config, monkeypatch):
        monkeypatch.setattr(test_config, "sweep_interval_seconds", test_config.sweep_interval_seconds)
        with pytest.raises(ConfigurationError) as exc_info:
            update_config(parse_args(["--sweep-interval", "-1"]))
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID
