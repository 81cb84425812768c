"""
Protocol definitions for larder's collaborators.

Defines interface contracts for:
- RecordStoreProtocol: the durable key-value substrate
  (SQLite locally, in-memory for tests, entry-point backends elsewhere)
- IdentityProvider: the already-authenticated current user
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .types import Entity


@runtime_checkable
class RecordStoreProtocol(Protocol):
    """
    Durable record storage: collection key -> JSON array of entities.

    Implemented by:
    - SqliteRecordStore (local file)
    - MemoryRecordStore (tests, ephemeral sessions)
    """

    def load(self, key: str) -> Optional[list[Entity]]:
        """Load a collection. Returns None if absent or unreadable; never raises for corrupt data."""
        ...

    def save(self, key: str, items: list[Entity]) -> None:
        """Replace the collection. Visible to the next load() in this process."""
        ...

    def load_settings(self, key: str) -> Optional[dict[str, Any]]: ...

    def save_settings(self, key: str, settings: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...

    def close(self) -> None: ...


@runtime_checkable
class IdentityProvider(Protocol):
    """
    Supplies the authenticated user. Authentication itself happens elsewhere.
    """

    @property
    def current_user(self) -> Optional[dict[str, Any]]:
        """The signed-in user (read-only), or None."""
        ...

    def logout(self) -> None:
        """End the session."""
        ...
