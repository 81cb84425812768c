"""
Pending form state: the draft of a new or edited entity.

A PendingForm collects values (typed by the user or patched from an AI
response), validates required fields, and commits through the repository
only on submit().
"""

import copy
import logging
from typing import Any, Optional

from .errors import ValidationError
from .interpreter import AIResponse, Raw, Structured
from .repository import EntityRepository
from .types import Entity, is_number

logger = logging.getLogger(__name__)


class PendingForm:
    """Draft entity bound to a repository."""

    def __init__(self, repository: EntityRepository, values: dict[str, Any],
                 editing_id: Optional[str] = None):
        self._repo = repository
        self._values = values
        self._editing_id = editing_id
        self._open = True
        self.raw_text: Optional[str] = None

    @classmethod
    def start_create(cls, repository: EntityRepository, **overrides: Any) -> "PendingForm":
        """Open a form for a new entity, prefilled with defaults."""
        values = repository.entity_type.make_defaults()
        values.update(overrides)
        values.pop("id", None)
        return cls(repository, values)

    @classmethod
    def start_edit(cls, repository: EntityRepository, id: str) -> "PendingForm":
        """
        Open a form holding a copy of an existing entity.

        Raises:
            KeyError: If no entity has this id
        """
        entity = repository.get(id)
        if entity is None:
            raise KeyError(f"No entity with id {id!r} in {repository.key}")
        entity.pop("id", None)
        return cls(repository, entity, editing_id=id)

    @property
    def values(self) -> dict[str, Any]:
        return copy.deepcopy(self._values)

    @property
    def editing_id(self) -> Optional[str]:
        return self._editing_id

    @property
    def is_edit(self) -> bool:
        return self._editing_id is not None

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self) -> None:
        if not self._open:
            raise RuntimeError("Form is closed")

    def get(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def set(self, field: str, value: Any) -> None:
        self._check_open()
        if field == "id":
            raise ValueError("id cannot be set on a form")
        self._values[field] = value

    def apply(self, response: AIResponse) -> bool:
        """
        Apply an interpreted AI response.

        Structured patches are merged into the values. Raw text is kept in
        ``raw_text`` for display and leaves the values unchanged.

        Returns:
            True if values changed
        """
        self._check_open()
        if isinstance(response, Structured):
            patch = {k: v for k, v in response.patch.items() if k != "id"}
            self._values.update(copy.deepcopy(patch))
            self.raw_text = None
            logger.debug("Applied %s patch: %s", response.source, ", ".join(sorted(patch)))
            return True
        if isinstance(response, Raw):
            self.raw_text = response.text
            return False
        raise TypeError(f"Expected Structured or Raw, got {type(response).__name__}")

    def validate(self) -> dict[str, str]:
        """Field -> message for every failing field (empty if valid)."""
        errors = {}
        entity_type = self._repo.entity_type
        for name in entity_type.required:
            value = self._values.get(name)
            if value is None or (isinstance(value, str) and not value.strip()) or value == []:
                errors[name] = f"{name} is required"
        for name in entity_type.positive:
            if name in errors:
                continue
            value = self._values.get(name)
            if not is_number(value) or value <= 0:
                errors[name] = f"{name} must be a number greater than zero"
        return errors

    def submit(self) -> Optional[Entity]:
        """
        Validate and commit the draft, then close the form.

        Returns:
            The created or updated entity (None if the edited entity has
            since been deleted)

        Raises:
            ValidationError: If validate() reports errors (form stays open)
        """
        self._check_open()
        errors = self.validate()
        if errors:
            raise ValidationError(errors)
        if self._editing_id is None:
            result = self._repo.create(self._values)
        else:
            result = self._repo.update(self._editing_id, self._values)
        self._open = False
        return result

    def cancel(self) -> None:
        """Discard the draft."""
        self._open = False
        self._values = {}
        self.raw_text = None
