# src/async_filestore/base/query.py
import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .exceptions import UnsupportedOperatorException
from .utils import MISSING

# --- Setup Logging ---
log = logging.getLogger(__name__)

# Field holding the engine-assigned insertion sequence.
SEQUENCE_FIELD = "$loki"

DEFAULT_LIMIT = 100

# Order matters: flags are rendered in this order.
_REGEX_FLAGS = (
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
    (re.ASCII, "a"),
)


def regex_flags_to_string(flags: int) -> str:
    """Render ``re`` flag bits as the compact letter form, e.g. ``'im'``."""
    return "".join(letter for bit, letter in _REGEX_FLAGS if flags & bit)


def regex_flags_from_string(flags: str) -> int:
    lookup = {letter: bit for bit, letter in _REGEX_FLAGS}
    result = 0
    for letter in flags or "":
        if letter not in lookup:
            raise ValueError(f"Unsupported regular expression flag: {letter!r}")
        result |= lookup[letter]
    return result


def is_operator_mapping(value: Any) -> bool:
    """True for a non-empty mapping whose keys are all ``$``-prefixed operators."""
    return (
        isinstance(value, Mapping)
        and len(value) > 0
        and all(isinstance(k, str) and k.startswith("$") for k in value.keys())
    )


# --- Query Normalizer ---
def normalize_value(value: Any) -> Any:
    """Rewrite a single field's value into its engine-consumable form."""
    if isinstance(value, re.Pattern):
        return {"$regex": [value.pattern, regex_flags_to_string(value.flags)]}

    if value is None:
        return {"$exists": False}

    if is_operator_mapping(value):
        rewritten = {}
        for operator, operand in value.items():
            if operator == "$ne" and operand is None:
                # null means "present with a null value", not "absent"
                rewritten[operator] = MISSING
            elif operator == "$regex" and isinstance(operand, re.Pattern):
                rewritten[operator] = [
                    operand.pattern,
                    regex_flags_to_string(operand.flags),
                ]
            else:
                rewritten[operator] = operand
        return rewritten

    return value


def _expand(query: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    Transform a query like this:

        {"fieldOne": 1, "fieldTwo": {"$gt": 1, "$lt": 10}}

    ... into:

        [
            {"fieldOne": 1},
            {"fieldTwo": {"$gt": 1}},
            {"fieldTwo": {"$lt": 10}},
        ]
    """
    expressions: List[Dict[str, Any]] = []
    for field_path, raw_value in query.items():
        if field_path == "$and":
            for sub_query in raw_value:
                expressions.extend(_expand(sub_query))
            continue
        if field_path == "$or":
            branches = [prepare_query(sub_query) for sub_query in raw_value]
            expressions.append({"$or": branches})
            continue
        if field_path.startswith("$"):
            raise UnsupportedOperatorException(
                f"Unsupported top-level query operator: {field_path}"
            )

        value = normalize_value(raw_value)
        if is_operator_mapping(value):
            for operator, operand in value.items():
                expressions.append({field_path: {operator: operand}})
        else:
            expressions.append({field_path: value})
    return expressions


def prepare_query(
    query: Optional[Mapping[str, Any]], schema: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Normalize a filter expression into the engine's query form.

    Regular expressions become ``$regex`` operands, ``$ne: None`` becomes
    ``$ne: MISSING``, literal ``None`` becomes ``$exists: False``, and every
    field/operator pair becomes its own expression. More than one expression
    is wrapped in ``$and``. The caller's mapping is not modified.

    Args:
        query: The caller-supplied filter. ``None`` and ``{}`` match everything.
        schema: The collection schema. Accepted for the host contract.

    Returns:
        A mapping directly consumable by the engine matcher.
    """
    if not query:
        return {}

    expressions = _expand(copy.deepcopy(dict(query)))

    if not expressions:
        prepared = {}
    elif len(expressions) == 1:
        prepared = expressions[0]
    else:
        prepared = {"$and": expressions}
    log.debug(f"Prepared query {dict(query)!r} as {prepared!r}")
    return prepared


def get_field_or_parent_schema(
    key: str, schema: Mapping[str, Any]
) -> Optional[Any]:
    """
    Given a collection schema, return the field settings for ``key``, or for
    its parent when ``key`` uses dot notation.
    """
    key_or_parent = key.split(".")[0] if "." in key else key
    return schema.get(key_or_parent)


# --- Sort/Paginate Resolver ---
@dataclass(frozen=True)
class SortParameters:
    property: str = SEQUENCE_FIELD
    descending: bool = False


def get_sort_parameters(
    options: Optional[Union["QueryOptions", Mapping[str, Any]]],
) -> SortParameters:
    """
    Derive the sort property and direction from caller options.

    The first key of ``options["sort"]`` is the property; a value of exactly
    -1 sorts descending. Without a sort mapping, results keep insertion order.
    """
    if isinstance(options, QueryOptions):
        sort = options.sort
    else:
        sort = (options or {}).get("sort")

    if not sort:
        return SortParameters()

    sort_property = next(iter(sort))
    return SortParameters(
        property=sort_property, descending=sort[sort_property] == -1
    )


# --- Query Options ---
@dataclass
class QueryOptions:
    """Options for a find call, as read from the host's ``options`` mapping."""

    offset: int = 0
    limit: int = DEFAULT_LIMIT
    sort: Optional[Dict[str, Any]] = None
    fields: Optional[Union[List[str], Dict[str, Any]]] = None
    page: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]]) -> "QueryOptions":
        options = dict(options or {})
        known = {"skip", "limit", "sort", "fields", "page"}
        offset = options.get("skip") or 0
        limit = options.get("limit") or DEFAULT_LIMIT
        if offset < 0:
            raise ValueError(f"skip must not be negative, got {offset}")
        if limit < 0:
            raise ValueError(f"limit must not be negative, got {limit}")
        return cls(
            offset=offset,
            limit=limit,
            sort=options.get("sort") or None,
            fields=options.get("fields") or None,
            page=options.get("page"),
            extra={k: v for k, v in options.items() if k not in known},
        )

    @property
    def sort_parameters(self) -> SortParameters:
        return get_sort_parameters(self)

    def __repr__(self) -> str:
        parts = []
        if self.sort:
            parts.append(f"sort={self.sort!r}")
        if self.fields:
            parts.append(f"fields={self.fields!r}")
        parts.append(f"limit={self.limit!r}")
        parts.append(f"offset={self.offset!r}")
        if self.page is not None:
            parts.append(f"page={self.page!r}")
        return f"QueryOptions({', '.join(parts)})"
