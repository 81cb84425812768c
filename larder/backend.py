"""
Pluggable record store factory.

Creates the durable record store based on configuration. The local backend
uses SQLite; "memory" keeps everything in-process. External backends
register via the ``larder.backends`` entry point group.

External backend packages provide a factory function::

    def create_record_store(config: StoreConfig) -> RecordStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."larder.backends"]
    my-backend = "my_package.backend:create_record_store"
"""

from .config import StoreConfig
from .protocol import RecordStoreProtocol

RECORDS_FILENAME = "records.db"


def create_record_store(config: StoreConfig) -> RecordStoreProtocol:
    """
    Create the record store from configuration.

    For ``backend = "local"`` (default), opens ``<store>/records.db``.
    For ``backend = "memory"``, returns an in-process store.
    For other values, loads the backend via the ``larder.backends``
    entry point group.
    """
    if config.backend == "local":
        from .record_store import SqliteRecordStore
        return SqliteRecordStore(config.path / RECORDS_FILENAME)
    if config.backend == "memory":
        from .record_store import MemoryRecordStore
        return MemoryRecordStore()
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> RecordStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="larder.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered. "
        f"Use 'local' or 'memory', or install a backend package."
    )
