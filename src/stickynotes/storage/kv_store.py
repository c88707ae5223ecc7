"""Key-value blob stores backing note persistence.

Two implementations share the ``KeyValueStore`` interface: an in-process
dictionary (tests, ephemeral sessions) and a SQLAlchemy-backed table in
SQLite (the default for the server).
"""
import datetime
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stickynotes.exceptions import ErrorCode, StorageError
from stickynotes.models.db_models import DBBlob, init_db

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Byte blobs addressed by string keys."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the blob stored under ``key``, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous blob."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""

    @abstractmethod
    def keys(self) -> List[str]:
        """List stored keys."""


class MemoryKeyValueStore(KeyValueStore):
    """Thread-safe in-memory store."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


class SqlKeyValueStore(KeyValueStore):
    """Key-value store persisted in the ``kv_store`` table.

    SQLAlchemy errors are wrapped in StorageError so callers only deal with
    domain exceptions.
    """

    def __init__(self, engine: Optional[Engine] = None, db_url: Optional[str] = None):
        self.engine = engine if engine is not None else init_db(db_url)

    def get(self, key: str) -> Optional[bytes]:
        try:
            with Session(self.engine) as session:
                row = session.get(DBBlob, key)
                return bytes(row.value) if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to read blob",
                operation="get",
                key=key,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            )

    def set(self, key: str, value: bytes) -> None:
        try:
            with Session(self.engine) as session, session.begin():
                row = session.get(DBBlob, key)
                now = datetime.datetime.now(datetime.timezone.utc)
                if row is None:
                    session.add(DBBlob(key=key, value=bytes(value), updated_at=now))
                else:
                    row.value = bytes(value)
                    row.updated_at = now
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to write blob",
                operation="set",
                key=key,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )

    def delete(self, key: str) -> bool:
        try:
            with Session(self.engine) as session, session.begin():
                row = session.get(DBBlob, key)
                if row is None:
                    return False
                session.delete(row)
                return True
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to delete blob",
                operation="delete",
                key=key,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            )

    def keys(self) -> List[str]:
        try:
            with Session(self.engine) as session:
                return list(session.scalars(select(DBBlob.key)))
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to list keys", operation="keys", original_error=e
            )

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
