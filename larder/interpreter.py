"""
Result interpreter: turns raw backend text into a form patch.

Backends are asked for JSON but often answer with fenced JSON, JSON
wrapped in prose, or plain "Label: value" lines. interpret() tries a
structured parse first and falls back to a line heuristic; when neither
yields the form's anchor fields it returns the text unchanged as Raw so
the caller can show it verbatim.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .types import is_number

logger = logging.getLogger(__name__)

FIELD_KINDS = ("text", "number", "integer", "date", "list")


# -----------------------------------------------------------------------------
# Response variants
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Structured:
    """A recognized patch. ``source`` is "json" or "heuristic"."""
    patch: dict[str, Any]
    source: str = "json"


@dataclass(frozen=True)
class Raw:
    """Unrecognized text, to be displayed as-is."""
    text: str


AIResponse = Union[Structured, Raw]


# -----------------------------------------------------------------------------
# Form schemas
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldSpec:
    """
    One form field the interpreter can fill.

    Attributes:
        name: Entity field name
        kind: text | number | integer | date | list
        cues: Case-insensitive label substrings for the line heuristic
        aliases: Alternative JSON keys (e.g. "total" for amount)
        choices: Allowed values, matched case-insensitively (empty = any)
        ignore: Label substrings that veto a cue match (e.g. "subtotal")
    """
    name: str
    kind: str = "text"
    cues: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    choices: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in FIELD_KINDS:
            raise ValueError(f"Unknown field kind: {self.kind!r}")

    def json_keys(self) -> set[str]:
        return {k.lower() for k in (self.name,) + self.aliases}


@dataclass(frozen=True)
class FormSchema:
    """
    The field set a form expects back from the backend.

    An anchor group is satisfied when all of its fields were extracted
    with non-empty values; any satisfied group makes the result usable.
    ``fallback_anchors`` (if set) replaces ``anchors`` for the line
    heuristic.
    """
    name: str
    fields: tuple[FieldSpec, ...]
    anchors: tuple[tuple[str, ...], ...]
    fallback_anchors: Optional[tuple[tuple[str, ...], ...]] = None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def prompt_shape(self) -> dict[str, str]:
        """Example JSON shape for build_extraction_prompt()."""
        shape = {}
        for f in self.fields:
            hint = f.kind
            if f.choices:
                hint = " | ".join(f.choices)
            elif f.kind == "date":
                hint = "YYYY-MM-DD"
            elif f.kind == "list":
                hint = "list of strings"
            shape[f.name] = hint
        return shape


TASK_FORM = FormSchema(
    name="task",
    fields=(
        FieldSpec("title", "text", cues=("title", "task", "name")),
        FieldSpec("description", "text", cues=("description", "details", "notes")),
        FieldSpec("category", "text", cues=("category",),
                  choices=("Work", "Personal", "Health", "Learning", "Shopping")),
        FieldSpec("priority", "text", cues=("priority",),
                  choices=("low", "medium", "high", "urgent")),
        FieldSpec("estimatedTime", "integer", cues=("estimated", "duration", "time"),
                  aliases=("estimate", "duration")),
        FieldSpec("tags", "list", cues=("tags",)),
        FieldSpec("dueDate", "date", cues=("due", "deadline"), aliases=("due", "deadline")),
    ),
    anchors=(("title",),),
)

RECEIPT_FORM = FormSchema(
    name="receipt",
    fields=(
        FieldSpec("vendor", "text", cues=("vendor", "merchant", "store"),
                  aliases=("merchant", "store", "vendorName")),
        FieldSpec("amount", "number", cues=("amount", "total"),
                  aliases=("total", "totalAmount"),
                  ignore=("subtotal", "sub total", "sub-total")),
        FieldSpec("date", "date", cues=("date",), aliases=("transactionDate",)),
        FieldSpec("description", "text", cues=("description", "item"),
                  aliases=("items", "item")),
    ),
    anchors=(("vendor", "amount"),),
    fallback_anchors=(("vendor",), ("amount",)),
)

TICKET_FORM = FormSchema(
    name="ticket",
    fields=(
        FieldSpec("category", "text", cues=("category",), aliases=("suggestedCategory",)),
        FieldSpec("priority", "text", cues=("priority",), aliases=("suggestedPriority",),
                  choices=("low", "medium", "high", "urgent")),
        FieldSpec("tags", "list", cues=("tags",), aliases=("suggestedTags",)),
    ),
    anchors=(("category",), ("priority",)),
)

PRODUCT_FORM = FormSchema(
    name="product",
    fields=(
        FieldSpec("name", "text", cues=("name", "product", "title"),
                  aliases=("productName", "title")),
        FieldSpec("description", "text", cues=("description",)),
        FieldSpec("price", "number", cues=("price",), aliases=("estimatedPrice",)),
        FieldSpec("category", "text", cues=("category",)),
        FieldSpec("tags", "list", cues=("tags", "keywords"), aliases=("keywords",)),
    ),
    anchors=(("name",),),
)

FORM_SCHEMAS: dict[str, FormSchema] = {
    "tasks": TASK_FORM,
    "transactions": RECEIPT_FORM,
    "tickets": TICKET_FORM,
    "products": PRODUCT_FORM,
}


# -----------------------------------------------------------------------------
# Value coercion
# -----------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _to_number(value: Any) -> Optional[float]:
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match:
            try:
                return float(match.group().replace(",", ""))
            except ValueError:
                return None
    return None


def _to_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = value.strip().strip('",\'').strip()
        return text or None
    if is_number(value):
        return str(value)
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("name") or item.get("description")
            text = _to_text(item) if not isinstance(item, list) else None
            if text:
                parts.append(text)
        return ", ".join(parts) or None
    return None


def _to_list(value: Any) -> Optional[list[str]]:
    if isinstance(value, str):
        value = re.split(r"[,;]", value.strip().strip("[]"))
    if not isinstance(value, list):
        return None
    items = []
    for item in value:
        text = _to_text(item) if isinstance(item, (str, int, float)) else None
        if text:
            items.append(text)
    return items or None


def coerce(spec: FieldSpec, value: Any) -> Any:
    """Coerce a value to the field's kind. Returns None if not possible."""
    if value is None or isinstance(value, bool):
        return None
    if spec.kind == "number":
        return _to_number(value)
    if spec.kind == "integer":
        number = _to_number(value)
        return None if number is None else int(round(number))
    if spec.kind == "date":
        match = _DATE_RE.search(value) if isinstance(value, str) else None
        return match.group() if match else None
    if spec.kind == "list":
        return _to_list(value)
    text = _to_text(value)
    if text is not None and spec.choices:
        for choice in spec.choices:
            if choice.lower() == text.lower():
                return choice
        return None
    return text


# -----------------------------------------------------------------------------
# Structured path
# -----------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def parse_json(raw_text: str) -> Any:
    """
    Parse JSON from backend text.

    Strips Markdown code fences; if the text is not JSON as a whole, the
    outermost {...} or [...] span is tried. Returns None if nothing parses.
    """
    text = raw_text.strip()
    fence = _FENCE_RE.search(text)
    if fence:
        text = fence.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start, end = text.find(open_char), text.rfind(close_char)
        if 0 <= start < end:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue
    return None


def _extract_object(schema: FormSchema, obj: Mapping[str, Any]) -> dict[str, Any]:
    lowered = {str(k).lower(): v for k, v in obj.items()}
    extracted = {}
    for spec in schema.fields:
        for key in (spec.name.lower(),) + tuple(a.lower() for a in spec.aliases):
            if key in lowered:
                value = coerce(spec, lowered[key])
                if value is not None:
                    extracted[spec.name] = value
                    break
    return extracted


# -----------------------------------------------------------------------------
# Heuristic path
# -----------------------------------------------------------------------------

_BULLET_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)]|#+)\s+")
_EMPHASIS_RE = re.compile(r"[*_`]+")
_SEPARATOR_RE = re.compile(r"[:=]")


def _clean_line(line: str) -> str:
    line = _BULLET_RE.sub("", line)
    return _EMPHASIS_RE.sub("", line).strip()


def _extract_lines(schema: FormSchema, raw_text: str) -> dict[str, Any]:
    extracted: dict[str, Any] = {}
    for raw_line in raw_text.splitlines():
        line = _clean_line(raw_line)
        if not line:
            continue
        sep = _SEPARATOR_RE.search(line)
        label = (line[:sep.start()] if sep else line).lower()
        for spec in schema.fields:
            if spec.name in extracted:
                continue
            if any(i in label for i in spec.ignore):
                continue
            cue = next((c for c in spec.cues if c.lower() in label), None)
            if cue is None:
                continue
            if sep:
                value_text = line[sep.end():]
            else:
                value_text = line[label.index(cue.lower()) + len(cue):]
            value = coerce(spec, value_text)
            if value is not None:
                extracted[spec.name] = value
                break
    return extracted


# -----------------------------------------------------------------------------
# Interpretation
# -----------------------------------------------------------------------------

def _anchored(extracted: Mapping[str, Any], groups: tuple[tuple[str, ...], ...]) -> bool:
    return any(
        all(extracted.get(name) not in (None, "", []) for name in group)
        for group in groups
    )


def _merge(schema: FormSchema, current: Optional[Mapping[str, Any]],
           extracted: Mapping[str, Any]) -> dict[str, Any]:
    patch = {}
    if current:
        patch = {name: current[name] for name in schema.field_names if name in current}
    patch.update(extracted)
    return patch


def _first_object(data: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        return next((item for item in data if isinstance(item, dict)), None)
    return None


def interpret(
    raw_text: str,
    schema: FormSchema,
    current: Optional[Mapping[str, Any]] = None,
) -> AIResponse:
    """
    Interpret backend text for a form.

    Args:
        raw_text: Text returned by the backend
        schema: Fields the form expects
        current: Current form values; fields not extracted keep these

    Returns:
        Structured(patch) if an anchor group was found, else Raw(raw_text)
    """
    obj = _first_object(parse_json(raw_text))
    if obj is not None:
        extracted = _extract_object(schema, obj)
        if _anchored(extracted, schema.anchors):
            return Structured(_merge(schema, current, extracted), "json")
        logger.debug("JSON response lacks %s anchors; trying line heuristic", schema.name)

    extracted = _extract_lines(schema, raw_text)
    if _anchored(extracted, schema.fallback_anchors or schema.anchors):
        return Structured(_merge(schema, current, extracted), "heuristic")

    logger.debug("No %s fields recognized; returning raw text", schema.name)
    return Raw(raw_text)


def interpret_many(raw_text: str, schema: FormSchema) -> list[Structured]:
    """
    Interpret a JSON array of objects (bulk creation).

    An object with a single list-of-objects value (e.g. {"tasks": [...]})
    is unwrapped. Objects without an anchor are skipped.
    """
    data = parse_json(raw_text)
    if isinstance(data, dict):
        lists = [v for v in data.values() if isinstance(v, list)]
        data = lists[0] if len(lists) == 1 else [data]
    if not isinstance(data, list):
        return []
    results = []
    for obj in data:
        if not isinstance(obj, dict):
            continue
        extracted = _extract_object(schema, obj)
        if _anchored(extracted, schema.anchors):
            results.append(Structured(extracted, "json"))
    return results


class ResultInterpreter:
    """Interpreter bound to one form schema."""

    def __init__(self, schema: FormSchema):
        self.schema = schema

    def interpret(self, raw_text: str, current: Optional[Mapping[str, Any]] = None) -> AIResponse:
        return interpret(raw_text, self.schema, current)

    def interpret_many(self, raw_text: str) -> list[Structured]:
        return interpret_many(raw_text, self.schema)

    def prompt(self, text: str = "") -> str:
        """Extraction prompt asking for this schema's JSON shape."""
        from .providers.base import build_extraction_prompt
        return build_extraction_prompt(self.schema.prompt_shape(), text)
