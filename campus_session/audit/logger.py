"""
Buffered, categorized audit logger.

Call sites log synchronously into an in-memory buffer. The buffer is moved to
the key-value store by a flush, which happens when:

- the buffer reaches ``buffer_size`` entries
- an ERROR or CRITICAL entry is appended
- the periodic flush timer fires
- the process tears down (``destroy`` or the atexit hook)

Each category gets one text segment per day under
``<prefix><CATEGORY>_<YYYY-MM-DD>.log``. Segments are capped in size by
dropping their oldest lines.
"""

import asyncio
import atexit
import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from campus_session.audit.models import ErrorInfo, LogEntry, LogLevel, serialize_data
from campus_session.core.config import Settings
from campus_session.core.timers import Scheduler, TimerHandle
from campus_session.core.utils.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 5.0
DEFAULT_SEGMENT_MAX_BYTES = 1024 * 1024
DEFAULT_SEGMENT_PREFIX = "logs_"

_ENTRY_START = re.compile(r"^\[\d{4}-\d{2}-\d{2}T")

_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


class SegmentWriteError(Exception):
    """A flush stopped part-way; ``unwritten`` entries were not persisted."""

    def __init__(self, unwritten: List[LogEntry], cause: Exception):
        self.unwritten = unwritten
        self.cause = cause
        super().__init__(f"{len(unwritten)} audit entries not written: {cause}")


def format_timestamp(instant: float) -> str:
    """Epoch seconds as ISO-8601 UTC with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(instant, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AuditLogger:
    """
    Audit trail for session and security events.

    Args:
        store: Key-value store receiving the log segments
        scheduler: Clock and timers; without one there is no periodic flush
        buffer_size: Buffered entry count that forces a flush
        flush_interval: Seconds between periodic flushes
        segment_max_bytes: Size cap of one segment (UTF-8 bytes)
        segment_prefix: Key prefix shared by all segments
        mirror_to_stdlib: Also emit every entry to the ``logging`` module
        register_atexit: Flush whatever is buffered when the interpreter exits
    """

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: Optional[Scheduler] = None,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        segment_max_bytes: int = DEFAULT_SEGMENT_MAX_BYTES,
        segment_prefix: str = DEFAULT_SEGMENT_PREFIX,
        mirror_to_stdlib: bool = True,
        register_atexit: bool = False,
    ):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        if segment_max_bytes <= 0:
            raise ValueError("segment_max_bytes must be positive")

        self.store = store
        self.scheduler = scheduler
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.segment_max_bytes = segment_max_bytes
        self.segment_prefix = segment_prefix
        self.mirror_to_stdlib = mirror_to_stdlib

        self._clock: Callable[[], float] = scheduler.now if scheduler else time.time
        self._buffer: List[LogEntry] = []
        self._store_lock = threading.Lock()
        self._flushing = False
        self._flush_done: Optional[asyncio.Future] = None
        self._scheduled_flush: Optional[asyncio.Task] = None
        self._flush_timer: Optional[TimerHandle] = None
        self._atexit_registered = False
        self.flush_count = 0

        if scheduler is not None:
            self._start_periodic_flush()

        if register_atexit:
            atexit.register(self._atexit_flush)
            self._atexit_registered = True

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: KeyValueStore,
        scheduler: Optional[Scheduler] = None,
        **kwargs: Any,
    ) -> "AuditLogger":
        options: Dict[str, Any] = {
            "buffer_size": settings.log_buffer_size,
            "flush_interval": settings.log_flush_interval,
            "segment_max_bytes": settings.log_segment_max_bytes,
            "segment_prefix": settings.log_segment_prefix,
            "mirror_to_stdlib": settings.log_mirror_to_stdlib,
        }
        options.update(kwargs)
        return cls(store, scheduler, **options)

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of entries waiting for the next flush."""
        return len(self._buffer)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    def buffered_entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._buffer)

    def log(
        self,
        level: LogLevel,
        category: str,
        message: str,
        data: Any = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Record one entry. Never raises."""
        try:
            entry = LogEntry(
                timestamp=format_timestamp(self._clock()),
                level=LogLevel(level),
                category=str(category),
                message=str(message),
                data=serialize_data(data),
                user_id=str(user_id) if user_id is not None else None,
                session_id=str(session_id) if session_id is not None else None,
                error=ErrorInfo.from_exception(error) if isinstance(error, BaseException) else None,
            )
        except Exception:
            logger.exception(f"Dropping malformed audit entry for category {category!r}")
            return

        self._buffer.append(entry)

        if self.mirror_to_stdlib:
            self._mirror(entry, error)

        if len(self._buffer) >= self.buffer_size or entry.level >= LogLevel.ERROR:
            self._request_flush()

    def _mirror(self, entry: LogEntry, error: Optional[BaseException]) -> None:
        # Handler failures go through Handler.handleError and never reach here
        logging.getLogger(f"campus_session.audit.{entry.category}").log(
            _STDLIB_LEVELS[entry.level],
            entry.message,
            exc_info=error if isinstance(error, BaseException) else None,
            extra={
                "category": entry.category,
                "user_id": entry.user_id,
                "session_id": entry.session_id,
            },
        )

    def _request_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush_sync()
            return

        if self._scheduled_flush is None or self._scheduled_flush.done():
            self._scheduled_flush = loop.create_task(self.flush())

    def _needs_flush(self) -> bool:
        return len(self._buffer) >= self.buffer_size or any(
            entry.level >= LogLevel.ERROR for entry in self._buffer
        )

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def debug(self, category: str, message: str, data: Any = None,
              user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.log(LogLevel.DEBUG, category, message, data, user_id, session_id)

    def info(self, category: str, message: str, data: Any = None,
             user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.log(LogLevel.INFO, category, message, data, user_id, session_id)

    def warn(self, category: str, message: str, data: Any = None,
             user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.log(LogLevel.WARN, category, message, data, user_id, session_id)

    def error(self, category: str, message: str, error: Optional[BaseException] = None,
              data: Any = None, user_id: Optional[str] = None,
              session_id: Optional[str] = None) -> None:
        self.log(LogLevel.ERROR, category, message, data, user_id, session_id, error)

    def critical(self, category: str, message: str, error: Optional[BaseException] = None,
                 data: Any = None, user_id: Optional[str] = None,
                 session_id: Optional[str] = None) -> None:
        self.log(LogLevel.CRITICAL, category, message, data, user_id, session_id, error)

    def log_session_event(self, event: str, data: Any = None,
                          user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.info("SESSION", event, data, user_id, session_id)

    def log_auth_event(self, event: str, data: Any = None,
                       user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.info("AUTH", event, data, user_id, session_id)

    def log_security_event(self, event: str, data: Any = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.warn("SECURITY", event, data, user_id, session_id)

    def log_database_event(self, event: str, data: Any = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.info("DATABASE", event, data, user_id, session_id)

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def _start_periodic_flush(self) -> None:
        self._flush_timer = self.scheduler.call_every(self.flush_interval, self._on_flush_timer)

    async def _on_flush_timer(self) -> None:
        await self.flush()

    def _take_batch(self) -> List[LogEntry]:
        batch = self._buffer
        self._buffer = []
        return batch

    def _requeue(self, entries: List[LogEntry]) -> None:
        # Unwritten entries go back in front of anything logged meanwhile
        self._buffer[:0] = entries

    async def flush(self) -> None:
        """
        Persist every buffered entry.

        A flush already in progress is not started twice; entries logged while
        it runs wait for the next cycle. On failure the unwritten entries are put
        back at the front of the buffer in their original order.
        """
        if self._flushing or not self._buffer:
            return

        loop = asyncio.get_running_loop()
        self._flushing = True
        self._flush_done = loop.create_future()
        batch = self._take_batch()
        succeeded = False

        try:
            await asyncio.to_thread(self._write_batch, batch)
            succeeded = True
        except SegmentWriteError as e:
            logger.error(f"Failed to flush audit logs: {e.cause}")
            self._requeue(e.unwritten)
        except Exception as e:
            logger.error(f"Failed to flush audit logs: {e}")
            self._requeue(batch)
        finally:
            self._flushing = False
            self._flush_done.set_result(None)

        if succeeded:
            self.flush_count += 1
            if self._needs_flush():
                loop.call_soon(self._request_flush)

    def flush_sync(self) -> None:
        """Blocking flush for callers without an event loop (and process exit)."""
        if self._flushing or not self._buffer:
            return

        self._flushing = True
        batch = self._take_batch()
        try:
            self._write_batch(batch)
            self.flush_count += 1
        except SegmentWriteError as e:
            logger.error(f"Failed to flush audit logs: {e.cause}")
            self._requeue(e.unwritten)
        except Exception as e:
            logger.error(f"Failed to flush audit logs: {e}")
            self._requeue(batch)
        finally:
            self._flushing = False

    def _segment_key(self, entry: LogEntry) -> str:
        return f"{self.segment_prefix}{entry.category}_{entry.timestamp[:10]}.log"

    def _write_batch(self, batch: List[LogEntry]) -> None:
        """
        Append ``batch`` to its segments, one store write per segment.

        Runs in a worker thread during ``flush``. The store lock keeps each
        read-modify-write of a segment from interleaving with ``clear_logs``.
        """
        groups: Dict[str, List[LogEntry]] = {}
        for entry in batch:
            groups.setdefault(self._segment_key(entry), []).append(entry)

        written = set()
        with self._store_lock:
            for key, entries in groups.items():
                content = "\n".join(entry.format() for entry in entries) + "\n"
                try:
                    self._append_segment(key, content)
                except Exception as e:
                    unwritten = [entry for entry in batch if id(entry) not in written]
                    raise SegmentWriteError(unwritten, e) from e
                written.update(id(entry) for entry in entries)

    def _append_segment(self, key: str, content: str) -> None:
        existing = self.store.get(key) or ""
        self.store.set(key, self._rotate(existing + content))

    def _rotate(self, content: str) -> str:
        """Drop the oldest lines until the segment fits the size cap."""
        size = len(content.encode("utf-8"))
        if size <= self.segment_max_bytes:
            return content

        lines = content.splitlines(keepends=True)
        start = 0
        while start < len(lines) and size > self.segment_max_bytes:
            size -= len(lines[start].encode("utf-8"))
            start += 1

        # Do not leave the Data/Error/Stack tail of a dropped entry at the top
        first_entry = start
        while first_entry < len(lines) and not _ENTRY_START.match(lines[first_entry]):
            first_entry += 1
        if first_entry < len(lines):
            start = first_entry

        return "".join(lines[start:])

    # ------------------------------------------------------------------
    # Operator API
    # ------------------------------------------------------------------

    def _segment_pattern(self, category: Optional[str] = None) -> "re.Pattern[str]":
        name = re.escape(category) if category else "(.+)"
        return re.compile(rf"^{re.escape(self.segment_prefix)}{name}_\d{{4}}-\d{{2}}-\d{{2}}\.log$")

    def _segment_keys(self, category: Optional[str] = None) -> List[str]:
        pattern = self._segment_pattern(category)
        return [key for key in self.store.keys(self.segment_prefix) if pattern.match(key)]

    def export_logs(self, category: Optional[str] = None) -> str:
        """Concatenate stored segments, each behind a ``=== <key> ===`` header."""
        parts = []
        with self._store_lock:
            for key in self._segment_keys(category):
                content = self.store.get(key)
                if content:
                    parts.append(f"\n=== {key} ===\n{content}")
        return "\n".join(parts)

    def clear_logs(self, category: Optional[str] = None) -> None:
        """
        Delete stored segments. Buffered entries are left alone.

        Blocks until a segment write in progress has finished, so the cleared
        segments stay cleared.
        """
        with self._store_lock:
            for key in self._segment_keys(category):
                self.store.remove(key)

    def list_categories(self) -> List[str]:
        """Categories that currently have at least one stored segment."""
        pattern = self._segment_pattern()
        categories: List[str] = []
        for key in self.store.keys(self.segment_prefix):
            match = pattern.match(key)
            if match and match.group(1) not in categories:
                categories.append(match.group(1))
        return categories

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def destroy(self) -> None:
        """Stop the periodic flush and persist everything still buffered."""
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

        if self._atexit_registered:
            atexit.unregister(self._atexit_flush)
            self._atexit_registered = False

        while True:
            waiting = [
                f for f in (self._scheduled_flush, self._flush_done)
                if f is not None and not f.done()
            ]
            if not waiting:
                break
            await asyncio.wait(waiting)

        await self.flush()

    def _atexit_flush(self) -> None:
        try:
            self.flush_sync()
        except Exception:
            logger.exception("Final audit flush failed")
