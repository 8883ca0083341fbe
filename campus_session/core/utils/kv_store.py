"""Persistent key-value storage strategies.

The session manager keeps its snapshot under one fixed key and the audit
logger keeps one text segment per category and day under a known prefix.
Which backend is used is decided by the embedding application:

- ``MemoryKeyValueStore``: process-local, for tests and ephemeral clients
- ``SqlKeyValueStore``: durable, survives restarts (SQLAlchemy)
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from threading import Event, Lock, RLock
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from campus_session.core.exceptions import StorageError
from campus_session.db.base import Base
from campus_session.db.models.kv_entry import KVEntry
from campus_session.db.session import create_db_engine, create_session_factory, session_scope

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract string-to-string store with prefix enumeration."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Create or overwrite ``key``."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; absent keys are ignored."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with ``prefix`` in the store's enumeration order."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Enumeration follows insertion order."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Values must be strings, got {type(value).__name__} for key {key}")
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class SqlKeyValueStore(KeyValueStore):
    """
    Durable store on a relational database.

    Rows live in the ``kventry`` table; the table is created on first use.
    Enumeration is ordered by key. Every database failure is re-raised as
    ``StorageError``.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if database_url is None:
                raise ValueError("Either database_url or engine is required")
            engine = create_db_engine(database_url)

        self.engine = engine
        self._session_factory = create_session_factory(engine)
        self._tables_initialized = False
        self._tables_init_lock = Lock()
        self._tables_init_event = Event()

    def _ensure_table(self) -> None:
        """Ensure the kventry table exists in a thread-safe manner."""
        # Fast path
        if self._tables_init_event.is_set():
            return

        with self._tables_init_lock:
            # Double-check after acquiring lock
            if not self._tables_initialized:
                try:
                    Base.metadata.create_all(
                        bind=self.engine,
                        tables=[KVEntry.__table__],
                        checkfirst=True,
                    )
                except SQLAlchemyError as e:
                    logger.error(f"Failed to initialize key-value table: {e}")
                    raise StorageError(f"Cannot initialize key-value table: {e}") from e
                self._tables_initialized = True
                logger.debug("Key-value store table initialized successfully")
            self._tables_init_event.set()

    def get(self, key: str) -> Optional[str]:
        self._ensure_table()
        try:
            with session_scope(self._session_factory) as db:
                row = db.scalar(select(KVEntry).where(KVEntry.key == key))
                return row.value if row else None
        except SQLAlchemyError as e:
            logger.error(f"Read failed for key {key}: {e}")
            raise StorageError(f"Read failed for key {key}") from e

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Values must be strings, got {type(value).__name__} for key {key}")
        self._ensure_table()

        try:
            with session_scope(self._session_factory) as db:
                try:
                    # Update first, insert when nothing matched
                    result = db.execute(
                        update(KVEntry).where(KVEntry.key == key).values(value=value)
                    )
                    if result.rowcount == 0:
                        db.add(KVEntry(key=key, value=value))
                    db.commit()
                except IntegrityError:
                    # Another writer inserted between our UPDATE and INSERT
                    db.rollback()
                    logger.debug(f"Insert raced for key {key}, retrying update")
                    db.execute(update(KVEntry).where(KVEntry.key == key).values(value=value))
                    db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database operation failed for key {key}: {e}")
            raise StorageError(f"Write failed for key {key}") from e

    def remove(self, key: str) -> None:
        self._ensure_table()
        try:
            with session_scope(self._session_factory) as db:
                row = db.scalar(select(KVEntry).where(KVEntry.key == key))
                if row:
                    db.delete(row)
                    db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Delete failed for key {key}: {e}")
            raise StorageError(f"Delete failed for key {key}") from e

    def keys(self, prefix: str = "") -> List[str]:
        self._ensure_table()
        try:
            with session_scope(self._session_factory) as db:
                stmt = select(KVEntry.key).order_by(KVEntry.key)
                if prefix:
                    stmt = stmt.where(KVEntry.key.startswith(prefix, autoescape=True))
                return list(db.scalars(stmt))
        except SQLAlchemyError as e:
            logger.error(f"Key listing failed for prefix {prefix!r}: {e}")
            raise StorageError(f"Key listing failed for prefix {prefix!r}") from e
