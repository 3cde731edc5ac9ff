"""
Database module for jamsync.

Handles SQLite database initialization, schema creation, and connection management.
The same file doubles as the shared row store when several processes point at it.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ConfigEntry


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.jamsync/jamsync.db
        """
        self.logger = logging.getLogger(__name__)

        if db_path is None:
            jamsync_dir = Path.home() / ".jamsync"
            jamsync_dir.mkdir(exist_ok=True)
            db_path = str(jamsync_dir / "jamsync.db")

        self.db_path = db_path
        self._ensure_schema()
        self.logger.info("Database initialized at %s", self.db_path)

    def _ensure_schema(self):
        """Ensure database schema exists."""
        conn = self.get_connection()
        try:
            cursor = conn.cursor()

            # Shared rows: one per logical channel (users / bands / history)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS app_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    revision INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.commit()
        finally:
            conn.close()
        self.logger.debug("Database schema created/verified")

    def get_connection(self):
        """
        Get a new database connection.

        Each caller gets its own connection and is responsible for closing it.
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def close(self):
        """Close database connection (no-op since we use per-call connections)."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class StorageRepository:
    """Reads and writes whole-collection rows in the app_storage table."""

    def __init__(self, database: Database):
        self.database = database

    def get_all(self) -> List[Dict[str, Any]]:
        """
        Get every row.

        Returns:
            List of dicts with 'key', 'value' (JSON text) and 'revision'
        """
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, revision FROM app_storage")
            return [
                {"key": row["key"], "value": row["value"], "revision": row["revision"]}
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def get_revisions(self) -> Dict[str, int]:
        """Get the current revision of every row, keyed by row key."""
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, revision FROM app_storage")
            return {row["key"]: row["revision"] for row in cursor.fetchall()}
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, revision FROM app_storage WHERE key = ?", (key,))
            row = cursor.fetchone()
            if row is None:
                return None
            return {"key": row["key"], "value": row["value"], "revision": row["revision"]}
        finally:
            conn.close()

    def upsert(self, key: str, value: Any) -> int:
        """
        Overwrite a row's whole value.

        Returns:
            The row's new revision
        """
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO app_storage (key, value, revision, updated_at)
                VALUES (?, ?, 1, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    revision = app_storage.revision + 1,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value)),
            )
            conn.commit()
            cursor.execute("SELECT revision FROM app_storage WHERE key = ?", (key,))
            return cursor.fetchone()["revision"]
        finally:
            conn.close()


class ConfigRepository:
    """Key/value access to the config table."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, key: str) -> Optional[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, updated_at FROM config WHERE key = ?", (key,))
            row = cursor.fetchone()
            return self._to_entry(row) if row else None
        finally:
            conn.close()

    def get_all(self) -> List[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, updated_at FROM config ORDER BY key")
            return [self._to_entry(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def set(self, key: str, value: str) -> bool:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()
            return True
        finally:
            conn.close()

    def initialize_defaults(self, defaults: Dict[str, Any]):
        """Insert default values for keys that are not stored yet."""
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            for key, value in defaults.items():
                if value is None:
                    continue
                cursor.execute(
                    "INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)", (key, str(value))
                )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _to_entry(row) -> ConfigEntry:
        updated_at = row["updated_at"]
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)
        return ConfigEntry(key=row["key"], value=row["value"], updated_at=updated_at)
