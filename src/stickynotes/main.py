#!/usr/bin/env python
"""Main entry point for the sticky notes MCP server."""
import argparse
import atexit
import locale
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from stickynotes.config import StickyNotesConfig, config
from stickynotes.exceptions import ConfigurationError
from stickynotes.models.db_models import init_db
from stickynotes.observability import configure_logging, metrics
from stickynotes.server.mcp_server import StickyNotesMcpServer
from stickynotes.services.lifecycle import LifecycleCoordinator
from stickynotes.services.note_store import NoteStore
from stickynotes.storage.kv_store import SqlKeyValueStore
from stickynotes.storage.note_persistence import NotePersistence


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Sticky Notes MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("STICKYNOTES_DATABASE_PATH")
    )
    parser.add_argument(
        "--sweep-interval",
        help="Seconds between cache maintenance sweeps",
        type=float,
        default=None
    )
    parser.add_argument(
        "--seed-samples",
        help="Add welcome notes when the collection is empty",
        action="store_true"
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("STICKYNOTES_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def update_config(args) -> None:
    """Update the global config with command line arguments.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.sweep_interval is not None:
        config.sweep_interval_seconds = args.sweep_interval
    if args.seed_samples:
        config.seed_sample_notes = True
    try:
        StickyNotesConfig.model_validate(config.model_dump())
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        key = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ConfigurationError(f"Invalid configuration: {first.get('msg', e)}", config_key=key)


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def build_store(kv_store) -> NoteStore:
    """Create a NoteStore over ``kv_store`` and load the saved collection."""
    store = NoteStore(persistence=NotePersistence(kv_store))
    loaded = store.load()
    logging.getLogger(__name__).info(f"Loaded {loaded} notes")
    if config.seed_sample_notes:
        store.seed_sample_notes()
    store.validate_and_repair()
    return store


def main(argv=None):
    """Run the sticky notes MCP server."""
    args = parse_args(argv)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    # Title sorting collates with the user locale
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as e:
        logger.warning(f"Using default collation: {e}")

    try:
        update_config(args)
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(2)

    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    kv_store = SqlKeyValueStore(engine=engine)
    store = build_store(kv_store)
    lifecycle = LifecycleCoordinator(store)
    lifecycle.start()
    atexit.register(kv_store.close)

    try:
        logger.info("Starting sticky notes MCP server")
        server = StickyNotesMcpServer(store)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)
    finally:
        lifecycle.on_background()
        # Flush before concurrent.futures stops accepting work at exit
        lifecycle.shutdown()


if __name__ == "__main__":
    main()
