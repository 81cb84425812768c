"""
Entity repository: typed CRUD over one durable collection.

One repository instance owns one collection key. The in-memory list and
the durable copy are kept equal after every mutation (write-through).
Entities are ordered most-recent-first.
"""

import copy
import logging
import time
from typing import Any, Callable, Iterable, Optional

from .entity_types import EntityType
from .protocol import RecordStoreProtocol
from .types import Entity

logger = logging.getLogger(__name__)

# Listener signature: (event, entity) where event is one of
# created | updated | deleted | imported | cleared (entity is None for cleared)
Listener = Callable[[str, Optional[Entity]], None]


def collection_key(app: str, collection: str) -> str:
    """Durable key for a collection: ``<app>_<collection>``."""
    return f"{app}_{collection}"


class EntityRepository:
    """
    CRUD over one collection, backed by a record store.

    None of the mutating operations raise for ordinary misuse: updating or
    deleting an unknown id is a no-op. Required-field validation belongs to
    the caller (see forms.PendingForm).
    """

    def __init__(
        self,
        store: RecordStoreProtocol,
        entity_type: EntityType,
        *,
        app: str = "larder",
    ):
        """
        Args:
            store: Durable record store
            entity_type: Definition of the collection (defaults, seed)
            app: Application name used to prefix the durable key
        """
        self._store = store
        self._type = entity_type
        self._key = collection_key(app, entity_type.collection)
        self._items: list[Entity] = []
        self._initialized = False
        self._revision = 0
        self._last_id = 0
        self._listeners: list[Listener] = []

    @property
    def key(self) -> str:
        return self._key

    @property
    def entity_type(self) -> EntityType:
        return self._type

    @property
    def revision(self) -> int:
        """Counter bumped by every persisted change."""
        return self._revision

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load the collection, installing the seed set if it is absent.

        Runs once per repository instance; later calls return immediately.

        Raises:
            UnsupportedSchemaError: If the stored payload is from a newer schema
        """
        if self._initialized:
            return
        loaded = self._store.load(self._key)
        if loaded is None:
            self._items = copy.deepcopy(self._type.seed)
            self._store.save(self._key, self._items)
            logger.info("Seeded %s with %d entities", self._key, len(self._items))
        else:
            self._items = [e for e in loaded if isinstance(e, dict)]
            logger.debug("Loaded %d entities from %s", len(self._items), self._key)
        self._initialized = True
        self._revision += 1

    def _persist(self) -> None:
        self._store.save(self._key, self._items)
        self._revision += 1

    # -------------------------------------------------------------------------
    # Ids
    # -------------------------------------------------------------------------

    def _new_id(self, taken: Optional[set[str]] = None) -> str:
        """Microsecond timestamp, bumped until unique."""
        existing = {e.get("id") for e in self._items}
        if taken:
            existing |= taken
        candidate = time.time_ns() // 1000
        while str(candidate) in existing or candidate <= self._last_id:
            candidate += 1
        self._last_id = candidate
        return str(candidate)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, entity: Optional[Entity]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, copy.deepcopy(entity))
            except Exception as e:
                logger.warning(
                    "Listener failed on %s %s: %s", self._key, event, e, exc_info=True
                )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list(self) -> list[Entity]:
        """All entities, most recent first (copies)."""
        self.initialize()
        return copy.deepcopy(self._items)

    def get(self, id: str) -> Optional[Entity]:
        """Copy of the entity with this id, or None."""
        self.initialize()
        index = self._index_of(id)
        if index is None:
            return None
        return copy.deepcopy(self._items[index])

    def __len__(self) -> int:
        self.initialize()
        return len(self._items)

    def _index_of(self, id: str) -> Optional[int]:
        for i, entity in enumerate(self._items):
            if entity.get("id") == id:
                return i
        return None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(self, partial: Optional[dict[str, Any]] = None, **fields: Any) -> Entity:
        """
        Create an entity from defaults overlaid with the given fields.

        Any ``id`` in the input is ignored; a fresh one is assigned.
        The new entity goes to the front of the collection.

        Returns:
            Copy of the created entity
        """
        self.initialize()
        values = dict(partial or {})
        values.update(fields)
        values.pop("id", None)

        entity = {"id": self._new_id()}
        entity.update(self._type.make_defaults())
        entity.update(copy.deepcopy(values))

        self._items.insert(0, entity)
        self._persist()
        logger.info("Created %s %s", self._key, entity["id"])
        self._notify("created", entity)
        return copy.deepcopy(entity)

    def update(self, id: str, patch: Optional[dict[str, Any]] = None, **fields: Any) -> Optional[Entity]:
        """
        Replace the given fields of an entity, leaving the rest untouched.

        The ``id`` field is never changed. Unknown ids are a no-op.

        Returns:
            Copy of the updated entity, or None if the id is unknown
        """
        self.initialize()
        index = self._index_of(id)
        if index is None:
            logger.debug("Update of unknown id %s in %s ignored", id, self._key)
            return None

        values = dict(patch or {})
        values.update(fields)
        values.pop("id", None)
        entity = self._items[index]
        if not values:
            logger.debug("Empty update of %s %s ignored", self._key, id)
            return copy.deepcopy(entity)

        entity.update(copy.deepcopy(values))
        self._persist()
        logger.info("Updated %s %s (%s)", self._key, id, ", ".join(sorted(values)))
        self._notify("updated", entity)
        return copy.deepcopy(entity)

    def delete(self, id: str) -> bool:
        """
        Remove an entity by id.

        Callers holding state bound to the id (timers, selections) should
        subscribe() and clear it on the "deleted" event.

        Returns:
            True if an entity was removed
        """
        self.initialize()
        index = self._index_of(id)
        if index is None:
            logger.debug("Delete of unknown id %s in %s ignored", id, self._key)
            return False
        entity = self._items.pop(index)
        self._persist()
        logger.info("Deleted %s %s", self._key, id)
        self._notify("deleted", entity)
        return True

    def import_entities(self, entities: Iterable[dict[str, Any]]) -> int:
        """
        Add a batch of entities at the front of the collection.

        Missing fields are filled from defaults. Entries without a string
        id, or whose id collides with an existing one, get a fresh id.
        The collection is persisted once.

        Returns:
            Number of entities imported
        """
        self.initialize()
        existing = {e.get("id") for e in self._items}
        batch: list[Entity] = []
        for raw in entities:
            if not isinstance(raw, dict):
                continue
            entity = self._type.make_defaults()
            entity.update(copy.deepcopy(raw))
            id = entity.get("id")
            if not isinstance(id, str) or not id or id in existing:
                id = self._new_id(taken=existing)
            entity["id"] = id
            existing.add(id)
            batch.append(entity)

        if not batch:
            return 0

        self._items[0:0] = batch
        self._persist()
        logger.info("Imported %d entities into %s", len(batch), self._key)
        for entity in batch:
            self._notify("imported", entity)
        return len(batch)

    def clear(self) -> None:
        """Remove every entity and persist the empty collection."""
        self.initialize()
        count = len(self._items)
        self._items = []
        self._persist()
        logger.info("Cleared %s (%d entities)", self._key, count)
        self._notify("cleared", None)
