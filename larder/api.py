"""
Workspace: the entry point that wires stores, repositories and AI.

Example:
    with Workspace() as ws:
        tasks = ws.repository("tasks")
        tasks.create(title="Buy milk")
        view = ws.view("tasks", search="milk")
        print(view.items)
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .csv_io import export_csv, import_csv
from .entity_types import get_entity_type, list_entity_types
from .forms import PendingForm
from .gateway import AIRequestGateway
from .interpreter import FORM_SCHEMAS, FormSchema, ResultInterpreter
from .protocol import IdentityProvider, RecordStoreProtocol
from .providers.base import AIBackend, get_registry
from .repository import EntityRepository, collection_key
from .types import Entity, utc_now
from .views import DerivedView, FilterCriteria, RangeFilter

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "larder-export"
EXPORT_VERSION = 1

DEFAULT_SETTINGS: dict[str, Any] = {
    "currency": "USD",
    "darkMode": False,
    "language": "en",
}


class Workspace:
    """
    One local store: its collections, settings and AI backend.

    Repositories are created on first use and cached, so every caller
    of ``repository("tasks")`` shares the same in-memory collection.
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[StoreConfig] = None,
        record_store: Optional[RecordStoreProtocol] = None,
        backend: Optional[AIBackend] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> None:
        """
        Open (or create) a workspace.

        Args:
            store_path: Store directory. Uses LARDER_STORE_PATH or ~/.larder if not given.
            config: Pre-loaded StoreConfig (skips filesystem config discovery)
            record_store: Injected record store (skips backend factory)
            backend: Injected AI backend (skips provider registry)
            identity: Supplies the signed-in user
        """
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            if store_path is not None:
                self._store_path = Path(store_path).expanduser().resolve()
            else:
                self._store_path = get_default_store_path()
            self._config = load_or_create_config(self._store_path)

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        if record_store is not None:
            self._record_store = record_store
        else:
            from .backend import create_record_store
            self._record_store = create_record_store(self._config)

        self._backend = backend
        self._identity = identity
        self._repositories: dict[str, EntityRepository] = {}
        logger.debug("Opened workspace at %s (app=%s)", self._store_path, self._config.app)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def record_store(self) -> RecordStoreProtocol:
        return self._record_store

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def entity_types(self) -> list[str]:
        return list_entity_types()

    def repository(self, name: str) -> EntityRepository:
        """
        Repository for a built-in entity type.

        Raises:
            KeyError: If the entity type is unknown
        """
        repo = self._repositories.get(name)
        if repo is None:
            repo = EntityRepository(self._record_store, get_entity_type(name), app=self._config.app)
            self._repositories[name] = repo
        return repo

    def view(
        self,
        name: str,
        *,
        search: str = "",
        equals: Optional[dict[str, Any]] = None,
        ranges: tuple[RangeFilter, ...] = (),
        sort: Optional[str] = None,
        descending: bool = False,
    ) -> DerivedView:
        """Derived view over a collection, searching the type's search fields."""
        repo = self.repository(name)
        criteria = FilterCriteria(
            search=search,
            search_fields=repo.entity_type.search_fields,
            equals=equals or {},
            ranges=ranges,
        )
        view = DerivedView(repo, criteria)
        if sort:
            view.set_sort(sort, descending)
        return view

    def form(self, name: str, id: Optional[str] = None, **overrides: Any) -> PendingForm:
        """Start a create form, or an edit form when id is given."""
        repo = self.repository(name)
        if id is not None:
            return PendingForm.start_edit(repo, id)
        return PendingForm.start_create(repo, **overrides)

    def clear(self, name: Optional[str] = None) -> None:
        """Empty one collection, or every collection when name is None."""
        names = [name] if name else list_entity_types()
        for n in names:
            self.repository(n).clear()

    # -------------------------------------------------------------------------
    # AI
    # -------------------------------------------------------------------------

    def _get_backend(self) -> AIBackend:
        """Get AI backend, creating it lazily on first use."""
        if self._backend is None:
            ai = self._config.ai
            name, params = (ai.name, ai.params) if ai is not None else ("none", {})
            self._backend = get_registry().create_backend(name, params)
            logger.debug("Created AI backend %s", name)
        return self._backend

    def gateway(
        self,
        *,
        on_loading: Optional[Callable[[bool], Any]] = None,
        on_result: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
    ) -> AIRequestGateway:
        """A fresh gateway (one per screen) over the shared backend."""
        return AIRequestGateway(
            self._get_backend(),
            on_loading=on_loading,
            on_result=on_result,
            on_error=on_error,
            max_attachment_bytes=self._config.max_attachment_bytes,
        )

    def interpreter(self, form: Union[str, FormSchema]) -> ResultInterpreter:
        """
        Interpreter for an entity type (e.g. "transactions") or a schema.

        Raises:
            KeyError: If no form schema exists for the name
        """
        if isinstance(form, FormSchema):
            return ResultInterpreter(form)
        schema = FORM_SCHEMAS.get(form)
        if schema is None:
            schema = next((s for s in FORM_SCHEMAS.values() if s.name == form), None)
        if schema is None:
            available = ", ".join(FORM_SCHEMAS)
            raise KeyError(f"No AI form for {form!r}. Available: {available}")
        return ResultInterpreter(schema)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @property
    def _settings_key(self) -> str:
        return collection_key(self._config.app, "settings")

    def settings(self) -> dict[str, Any]:
        """Stored settings merged over the defaults."""
        merged = dict(DEFAULT_SETTINGS)
        merged.update(self._record_store.load_settings(self._settings_key) or {})
        return merged

    def update_settings(self, **changes: Any) -> dict[str, Any]:
        merged = self.settings()
        merged.update(changes)
        self._record_store.save_settings(self._settings_key, merged)
        logger.info("Updated settings (%s)", ", ".join(sorted(changes)))
        return merged

    # -------------------------------------------------------------------------
    # Import / export
    # -------------------------------------------------------------------------

    def export_csv(self, name: str, entities: Optional[list[Entity]] = None) -> str:
        """CSV for a collection (or for the given entities, e.g. a view's items)."""
        repo = self.repository(name)
        items = repo.list() if entities is None else entities
        return export_csv(items, repo.entity_type.csv_columns)

    def import_csv(self, name: str, text: str) -> int:
        """Import CSV rows at the front of a collection. Returns the count."""
        repo = self.repository(name)
        return repo.import_entities(import_csv(text, repo.entity_type.csv_columns))

    def export_data(self, names: Optional[list[str]] = None) -> dict:
        """
        Export collections as a single dict.

        Returns:
            Dict in larder-export format (version 1) with a ``collections`` map
        """
        names = names or list_entity_types()
        return {
            "format": EXPORT_FORMAT,
            "version": EXPORT_VERSION,
            "exported_at": utc_now(),
            "app": self._config.app,
            "collections": {n: self.repository(n).list() for n in names},
            "settings": self.settings(),
        }

    def import_data(self, data: dict, *, mode: str = "merge") -> dict[str, int]:
        """
        Import collections from an export dict.

        Args:
            data: Dict in larder-export format
            mode: "merge" (skip existing ids) or "replace" (clear first)

        Returns:
            Dict with stats: {imported, skipped}

        Raises:
            ValueError: On a bad format, version, mode or collection name;
                nothing is changed
        """
        if data.get("format") != EXPORT_FORMAT:
            raise ValueError(f"Invalid export format (expected '{EXPORT_FORMAT}')")
        if data.get("version", 0) > EXPORT_VERSION:
            raise ValueError(
                f"Export format version {data['version']} is not supported "
                f"(this version supports up to {EXPORT_VERSION})"
            )
        if mode not in ("merge", "replace"):
            raise ValueError(f"Unknown import mode: {mode!r}")

        collections = {
            name: entities
            for name, entities in (data.get("collections") or {}).items()
            if isinstance(entities, list)
        }
        unknown = sorted(n for n in collections if n not in list_entity_types())
        if unknown:
            raise ValueError(
                f"Unknown collections in export: {', '.join(unknown)}. "
                f"Available: {', '.join(list_entity_types())}"
            )

        stats = {"imported": 0, "skipped": 0}
        for name, entities in collections.items():
            repo = self.repository(name)
            if mode == "replace":
                repo.clear()
                fresh = entities
            else:
                existing = {e.get("id") for e in repo.list()}
                fresh = [e for e in entities if not (isinstance(e, dict) and e.get("id") in existing)]
                stats["skipped"] += len(entities) - len(fresh)
            stats["imported"] += repo.import_entities(fresh)

        settings = data.get("settings")
        if isinstance(settings, dict):
            if mode == "replace":
                self._record_store.save_settings(self._settings_key, settings)
            else:
                self.update_settings(**settings)
        logger.info("Imported data (%s): %d imported, %d skipped",
                    mode, stats["imported"], stats["skipped"])
        return stats

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def current_user(self) -> Optional[dict[str, Any]]:
        if self._identity is None:
            return None
        return self._identity.current_user

    def logout(self) -> None:
        if self._identity is not None:
            self._identity.logout()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the record store, the backend client and the ops log."""
        if getattr(self, "_record_store", None) is not None:
            self._record_store.close()
            self._record_store = None
        backend = getattr(self, "_backend", None)
        if backend is not None and hasattr(backend, "close"):
            backend.close()
            self._backend = None
        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
