"""
Durable record store.

The only place that touches the device's durable key-value substrate.
Each collection key maps to a JSON array of entities; a parallel settings
key maps to a flat JSON object.

Collections are written inside a versioned envelope:

    {"schema_version": 1, "items": [...]}

Bare JSON arrays (the unversioned layout) are still accepted on load.
Malformed persisted state loads as absent instead of raising.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from .errors import UnsupportedSchemaError
from .types import Entity, utc_now, validate_key

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def encode_items(items: list[Entity]) -> str:
    """Serialize a collection into the versioned envelope."""
    return json.dumps(
        {"schema_version": SCHEMA_VERSION, "items": list(items)},
        ensure_ascii=False,
    )


def decode_items(key: str, text: Optional[str]) -> Optional[list[Entity]]:
    """
    Parse a persisted collection payload.

    Returns None (absent) for missing, invalid or wrongly shaped payloads.

    Raises:
        UnsupportedSchemaError: If the envelope was written by a newer schema
    """
    if text is None:
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Ignoring corrupt payload for %s (invalid JSON)", key)
        return None

    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        version = data.get("schema_version", 1)
        if isinstance(version, int) and version > SCHEMA_VERSION:
            raise UnsupportedSchemaError(
                f"Collection {key!r} has schema version {version}, "
                f"newer than supported ({SCHEMA_VERSION})"
            )
        items = data.get("items")
        if isinstance(items, list):
            return items

    logger.warning("Ignoring corrupt payload for %s (not a collection)", key)
    return None


def decode_settings(key: str, text: Optional[str]) -> Optional[dict[str, Any]]:
    """Parse a persisted settings object. Returns None if absent or invalid."""
    if text is None:
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Ignoring corrupt settings for %s (invalid JSON)", key)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring corrupt settings for %s (not an object)", key)
        return None
    return data


class SqliteRecordStore:
    """
    SQLite-backed key-value store for collections and settings.

    One row per key. Every save commits before returning, so an
    immediately following load in the same process observes it.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def _read(self, key: str) -> Optional[str]:
        validate_key(key)
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM records WHERE key = ?", (key,)
            )
            row = cursor.fetchone()
        return None if row is None else row["value"]

    def _write(self, key: str, value: str) -> None:
        validate_key(key)
        with self._lock:
            self._conn.execute("""
                INSERT OR REPLACE INTO records (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, utc_now()))
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def load(self, key: str) -> Optional[list[Entity]]:
        """Load a collection, or None if absent or unreadable."""
        return decode_items(key, self._read(key))

    def save(self, key: str, items: list[Entity]) -> None:
        """Replace the stored collection for key."""
        self._write(key, encode_items(items))

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def load_settings(self, key: str) -> Optional[dict[str, Any]]:
        """Load a flat settings object, or None if absent or unreadable."""
        return decode_settings(key, self._read(key))

    def save_settings(self, key: str, settings: dict[str, Any]) -> None:
        """Replace the stored settings object for key."""
        self._write(key, json.dumps(dict(settings), ensure_ascii=False))

    # -------------------------------------------------------------------------
    # Key management
    # -------------------------------------------------------------------------

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        validate_key(key)
        with self._lock:
            cursor = self._conn.execute("DELETE FROM records WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        """List stored keys."""
        with self._lock:
            cursor = self._conn.execute("SELECT key FROM records ORDER BY key")
            return [row["key"] for row in cursor]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()


class MemoryRecordStore:
    """
    In-process record store.

    Keeps serialized JSON text per key so that loaded values never share
    mutable state with saved ones, matching the durable store's semantics.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None):
        """
        Args:
            initial: Optional raw key -> JSON text mapping (e.g. to simulate
                     previously persisted or corrupted state)
        """
        self._data: dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[list[Entity]]:
        validate_key(key)
        return decode_items(key, self._data.get(key))

    def save(self, key: str, items: list[Entity]) -> None:
        validate_key(key)
        self._data[key] = encode_items(items)

    def load_settings(self, key: str) -> Optional[dict[str, Any]]:
        validate_key(key)
        return decode_settings(key, self._data.get(key))

    def save_settings(self, key: str, settings: dict[str, Any]) -> None:
        validate_key(key)
        self._data[key] = json.dumps(dict(settings), ensure_ascii=False)

    def delete(self, key: str) -> bool:
        validate_key(key)
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)

    def raw(self, key: str) -> Optional[str]:
        """Stored JSON text for key (for inspection)."""
        return self._data.get(key)

    def close(self) -> None:
        pass
