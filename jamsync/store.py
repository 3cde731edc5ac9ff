"""
Shared row store abstraction for jamsync.

A row store holds one JSON value per logical key ('users', 'bands', 'history')
and offers a push channel that reports every row change as (key, value).
Delivery is at-least-once: subscribers must tolerate repeated values.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from .database import Database, StorageRepository

ChangeCallback = Callable[[str, Any], None]


class StoreError(Exception):
    """Raised when the shared store cannot be read or written."""


class Subscription:
    """Returned by RowStore.subscribe(); unsubscribe() is idempotent."""

    def __init__(self, on_unsubscribe: Callable[[], None]):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._on_unsubscribe()


class RowStore(ABC):
    """Abstract base class for shared row stores."""

    @abstractmethod
    def fetch_all(self) -> Dict[str, Any]:
        """
        Read every row once.

        Returns:
            Mapping of key to decoded JSON value. Rows that cannot be
            decoded are left out.

        Raises:
            StoreError: If the store is unreachable
        """
        ...

    @abstractmethod
    def write(self, key: str, value: Any) -> None:
        """
        Overwrite a row's whole value.

        Raises:
            StoreError: If the write fails
        """
        ...

    @abstractmethod
    def subscribe(self, callback: ChangeCallback) -> Subscription:
        """
        Register for change notifications.

        The callback may be invoked from any thread.
        """
        ...

    def close(self) -> None:
        """Release background resources."""


class MemoryRowStore(RowStore):
    """
    In-process row store with synchronous fan-out.

    Several StateStores in one process can share it to behave like separate
    stations; every write is pushed back to all subscribers, the writer included.
    """

    def __init__(self, rows: Optional[Dict[str, Any]] = None):
        self._rows: Dict[str, Any] = dict(rows or {})
        self._subscribers: List[ChangeCallback] = []
        self._lock = threading.Lock()
        self.writes: List[tuple] = []
        self.logger = logging.getLogger(__name__)

    def fetch_all(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._rows)

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            self._rows[key] = value
            self.writes.append((key, value))
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(key, value)

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        with self._lock:
            self._subscribers.append(callback)

        def remove():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return Subscription(remove)


class SqliteRowStore(RowStore):
    """
    Row store backed by the app_storage table of a shared SQLite file.

    The push channel is a change feed thread that polls row revisions and
    reports every key whose revision moved, including our own writes. Rows
    whose text is not valid JSON are skipped with a warning.
    """

    def __init__(self, database: Database, poll_interval: float = 0.5):
        """
        Initialize SqliteRowStore.

        Args:
            database: Database whose file is shared between stations
            poll_interval: Seconds between change feed checks
        """
        self.repository = StorageRepository(database)
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

        self._subscribers: List[ChangeCallback] = []
        self._lock = threading.Lock()
        self._revisions: Dict[str, int] = {}
        self._snapshot_revisions: Optional[Dict[str, int]] = None
        self._feed_thread: Optional[threading.Thread] = None
        self._monitoring = False
        self._stop_event = threading.Event()

    def _decode(self, row: Dict[str, Any]) -> Tuple[bool, Any]:
        try:
            return True, json.loads(row["value"])
        except (TypeError, ValueError) as e:
            self.logger.warning(
                "Skipping undecodable row %s (revision %s): %s", row["key"], row["revision"], e
            )
            return False, None

    def fetch_all(self) -> Dict[str, Any]:
        try:
            rows = self.repository.get_all()
        except sqlite3.Error as e:
            raise StoreError(f"Could not read shared rows: {e}") from e

        result = {}
        for row in rows:
            ok, value = self._decode(row)
            if ok:
                result[row["key"]] = value
        # The change feed starts from the revisions this snapshot saw
        with self._lock:
            self._snapshot_revisions = {row["key"]: row["revision"] for row in rows}
        return result

    def write(self, key: str, value: Any) -> None:
        try:
            revision = self.repository.upsert(key, value)
        except sqlite3.Error as e:
            raise StoreError(f"Could not write row {key}: {e}") from e
        self.logger.debug("Wrote row %s (revision %s)", key, revision)

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        with self._lock:
            self._subscribers.append(callback)
        self._start_change_feed()

        def remove():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
                empty = not self._subscribers
            if empty:
                self._stop_change_feed()

        return Subscription(remove)

    # =========================================================================
    # Change Feed
    # =========================================================================

    def _start_change_feed(self):
        """Start background thread that turns revision bumps into notifications."""
        if self._monitoring:
            return

        with self._lock:
            baseline = self._snapshot_revisions
        if baseline is not None:
            self._revisions = dict(baseline)
        else:
            try:
                self._revisions = self.repository.get_revisions()
            except sqlite3.Error as e:
                self.logger.warning("Could not read initial revisions: %s", e)
                self._revisions = {}

        self._monitoring = True
        self._stop_event.clear()

        def monitor():
            while self._monitoring:
                try:
                    self._poll_changes()
                    self._stop_event.wait(self.poll_interval)
                except Exception as e:
                    self.logger.error("Error in change feed: %s", e, exc_info=True)
                    self._stop_event.wait(self.poll_interval * 5)

        self._feed_thread = threading.Thread(target=monitor, daemon=True, name="ChangeFeed")
        self._feed_thread.start()
        self.logger.info("Change feed started (every %.2fs)", self.poll_interval)

    def _poll_changes(self):
        """Notify subscribers about every row whose revision changed."""
        revisions = self.repository.get_revisions()
        changed = [key for key, rev in revisions.items() if self._revisions.get(key) != rev]
        for key in changed:
            row = self.repository.get(key)
            if row is None:
                continue
            self._revisions[key] = row["revision"]
            ok, value = self._decode(row)
            if not ok:
                continue
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                callback(key, value)

    def _stop_change_feed(self):
        """Stop the change feed thread."""
        if not self._monitoring:
            return

        self.logger.info("Stopping change feed...")
        self._monitoring = False
        self._stop_event.set()

        if (
            self._feed_thread
            and self._feed_thread.is_alive()
            and self._feed_thread is not threading.current_thread()
        ):
            self._feed_thread.join(timeout=2.0)
            if self._feed_thread.is_alive():
                self.logger.warning("Change feed thread did not stop within timeout")

        self.logger.info("Change feed stopped")

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()
        self._stop_change_feed()
