"""
Data types shared across larder.
"""

import re
from datetime import date, datetime, timezone
from typing import Any

# An entity is a plain JSON-serializable mapping with a string "id".
Entity = dict[str, Any]

# Equality filter sentinel: a predicate set to ALL is not applied.
ALL = "all"

# Collection keys are used as SQLite primary keys and file-safe names
_KEY_RE = re.compile(r'^[A-Za-z0-9_.-]+$')

MAX_KEY_LENGTH = 128


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    All stored timestamps in larder are UTC, without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def today() -> str:
    """Local calendar date as YYYY-MM-DD (default for date form fields)."""
    return date.today().isoformat()


def validate_key(key: str) -> None:
    """Validate a durable collection key."""
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"Key must be 1-{MAX_KEY_LENGTH} characters: {key!r}")
    if not _KEY_RE.match(key):
        raise ValueError(
            f"Key contains invalid characters (allowed: A-Z, a-z, 0-9, _, -, .): {key!r}"
        )


def is_number(value: Any) -> bool:
    """True for int/float values, excluding bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
