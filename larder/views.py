"""
Derived views: filtered, searched and sorted projections of a collection.

derive_view() is pure. DerivedView wraps it with memoization keyed on the
repository revision and the active criteria, so callers can read
``view.items`` as often as they like.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .types import ALL, Entity, is_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RangeFilter:
    """Inclusive range on one field. A None bound is open."""
    field: str
    low: Any = None
    high: Any = None

    @property
    def active(self) -> bool:
        return self.low is not None or self.high is not None

    def matches(self, entity: Entity) -> bool:
        if not self.active:
            return True
        if self.field not in entity:
            return False
        value = entity[self.field]
        try:
            if self.low is not None and not _comparable(value, self.low):
                return False
            if self.high is not None and not _comparable(value, self.high):
                return False
            if self.low is not None and value < self.low:
                return False
            if self.high is not None and value > self.high:
                return False
        except TypeError:
            return False
        return True


def _comparable(value: Any, bound: Any) -> bool:
    if is_number(value) and is_number(bound):
        return True
    return isinstance(value, str) and isinstance(bound, str)


@dataclass(frozen=True)
class FilterCriteria:
    """
    Independent predicates, combined with AND.

    Attributes:
        search: Case-insensitive substring; matches if any search field contains it
        search_fields: Fields to search; empty means every string (or list
            of strings) field of the entity
        equals: field -> value; ALL, None and "" leave the predicate unset
        ranges: Inclusive RangeFilters
    """
    search: str = ""
    search_fields: tuple[str, ...] = ()
    equals: Mapping[str, Any] = field(default_factory=dict)
    ranges: tuple[RangeFilter, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "search_fields", tuple(self.search_fields))
        object.__setattr__(self, "equals", dict(self.equals))
        object.__setattr__(self, "ranges", tuple(self.ranges))

    def replace(self, **changes: Any) -> "FilterCriteria":
        """Copy with some attributes changed."""
        return dataclasses.replace(self, **changes)

    def with_equals(self, field_name: str, value: Any) -> "FilterCriteria":
        equals = dict(self.equals)
        equals[field_name] = value
        return self.replace(equals=equals)

    def with_range(self, field_name: str, low: Any = None, high: Any = None) -> "FilterCriteria":
        ranges = [r for r in self.ranges if r.field != field_name]
        ranges.append(RangeFilter(field_name, low, high))
        return self.replace(ranges=tuple(ranges))


@dataclass(frozen=True)
class SortSpec:
    """
    One sort key and direction.

    Numbers sort before strings, strings before anything else. Entities
    missing the key go last in either direction. ``ranks`` maps enum
    values (e.g. priorities) to ordinals used instead of the raw value.
    """
    key: str
    descending: bool = False
    ranks: Optional[Mapping[str, int]] = None


def _search_values(entity: Entity, fields: tuple[str, ...]) -> Iterable[str]:
    names = fields or tuple(k for k in entity if k != "id")
    for name in names:
        value = entity.get(name)
        if isinstance(value, str):
            yield value
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, str):
                    yield item


def _matches_search(entity: Entity, criteria: FilterCriteria) -> bool:
    if not criteria.search:
        return True
    needle = criteria.search.lower()
    return any(needle in v.lower() for v in _search_values(entity, criteria.search_fields))


def _matches_equals(entity: Entity, equals: Mapping[str, Any]) -> bool:
    for name, wanted in equals.items():
        if wanted is None or wanted == ALL or wanted == "":
            continue
        value = entity.get(name)
        if isinstance(value, list):
            if wanted not in value:
                return False
        elif value != wanted:
            return False
    return True


def matches(entity: Entity, criteria: FilterCriteria) -> bool:
    """True if the entity passes every predicate."""
    return (
        _matches_search(entity, criteria)
        and _matches_equals(entity, criteria.equals)
        and all(r.matches(entity) for r in criteria.ranges)
    )


def _sort(items: list[Entity], sort: SortSpec) -> list[Entity]:
    numbers, strings, others, missing = [], [], [], []
    for entity in items:
        if sort.key not in entity or entity[sort.key] is None:
            missing.append(entity)
            continue
        value = entity[sort.key]
        if sort.ranks is not None and isinstance(value, str) and value in sort.ranks:
            numbers.append((sort.ranks[value], entity))
        elif is_number(value):
            numbers.append((value, entity))
        elif isinstance(value, str):
            strings.append((value, entity))
        else:
            others.append(entity)

    # sorted() is stable in both directions, so ties keep their prior order
    ordered = [e for _, e in sorted(numbers, key=lambda p: p[0], reverse=sort.descending)]
    ordered += [e for _, e in sorted(strings, key=lambda p: p[0], reverse=sort.descending)]
    return ordered + others + missing


def derive_view(
    items: Iterable[Entity],
    criteria: Optional[FilterCriteria] = None,
    sort: Optional[SortSpec] = None,
) -> list[Entity]:
    """
    Project a collection through criteria and an optional sort.

    Never mutates its inputs. The returned list holds the same entity
    objects as the input (no copies).
    """
    criteria = criteria or FilterCriteria()
    result = [e for e in items if matches(e, criteria)]
    if sort is not None:
        result = _sort(result, sort)
    return result


class DerivedView:
    """
    Memoized projection of a repository.

    Recomputes when the repository revision, the criteria or the sort
    changes; otherwise returns the cached projection.
    """

    def __init__(self, repository, criteria: Optional[FilterCriteria] = None,
                 sort: Optional[SortSpec] = None):
        self._repo = repository
        if criteria is None:
            criteria = FilterCriteria(search_fields=repository.entity_type.search_fields)
        self._criteria = criteria
        self._sort = sort
        self._cache_key: Optional[tuple] = None
        self._cache: list[Entity] = []

    @property
    def criteria(self) -> FilterCriteria:
        return self._criteria

    @property
    def sort(self) -> Optional[SortSpec]:
        return self._sort

    def set_criteria(self, **changes: Any) -> FilterCriteria:
        """Change some criteria attributes (search, equals, ranges, ...)."""
        self._criteria = self._criteria.replace(**changes)
        return self._criteria

    def set_filter(self, field_name: str, value: Any) -> FilterCriteria:
        """Set one equality predicate; ALL unsets it."""
        self._criteria = self._criteria.with_equals(field_name, value)
        return self._criteria

    def set_range(self, field_name: str, low: Any = None, high: Any = None) -> FilterCriteria:
        self._criteria = self._criteria.with_range(field_name, low, high)
        return self._criteria

    def set_sort(self, key: str, descending: bool = False) -> SortSpec:
        ranks = self._repo.entity_type.ranks_for(key)
        self._sort = SortSpec(key, descending, ranks)
        return self._sort

    def clear_sort(self) -> None:
        self._sort = None

    @property
    def items(self) -> list[Entity]:
        """Current projection (recomputed only when inputs changed)."""
        self._repo.initialize()
        key = (self._repo.revision, self._criteria, self._sort)
        if self._cache_key is None or not _same_key(self._cache_key, key):
            self._cache = derive_view(self._repo.list(), self._criteria, self._sort)
            self._cache_key = key
            logger.debug("Recomputed view of %s: %d items", self._repo.key, len(self._cache))
        return list(self._cache)

    @property
    def count(self) -> int:
        return len(self.items)

    def totals(self, field_name: str) -> float:
        """Sum of a numeric field over the projection."""
        return sum(e[field_name] for e in self.items if is_number(e.get(field_name)))


def _same_key(a: tuple, b: tuple) -> bool:
    # Criteria hold dicts, so compare by equality rather than hashing
    return a[0] == b[0] and a[1] == b[1] and a[2] == b[2]
