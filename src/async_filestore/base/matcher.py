# src/async_filestore/base/matcher.py
"""
Evaluation of normalized filters against in-memory documents.

Filters reaching this module have already been through
``base.query.prepare_query``: regular expressions arrive as
``{"$regex": [source, flags]}`` and absent-field tests use ``MISSING``.
"""

import re
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Union

from .exceptions import UnsupportedOperatorException
from .query import is_operator_mapping, regex_flags_from_string
from .utils import MISSING, split_path


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: str) -> "re.Pattern[str]":
    return re.compile(pattern, regex_flags_from_string(flags))


def _to_pattern(operand: Union[str, list, tuple, "re.Pattern[str]"]) -> "re.Pattern[str]":
    if isinstance(operand, re.Pattern):
        return operand
    if isinstance(operand, (list, tuple)):
        source = operand[0]
        flags = operand[1] if len(operand) > 1 else ""
        return _compile(source, flags)
    return _compile(operand, "")


def _compare(entity_value: Any, filter_value: Any, operator: str) -> bool:
    if entity_value is MISSING or entity_value is None:
        return False
    try:
        if operator == "$gt":
            return entity_value > filter_value
        if operator == "$gte":
            return entity_value >= filter_value
        if operator == "$lt":
            return entity_value < filter_value
        return entity_value <= filter_value
    except TypeError:
        # Values of unrelated types never match a range test.
        return False


def _contains(entity_value: Any, filter_value: Any, any_of: bool) -> bool:
    if not isinstance(entity_value, (list, str)):
        return False
    wanted = filter_value if isinstance(filter_value, list) else [filter_value]
    check = any if any_of else all
    return check(item in entity_value for item in wanted)


def check_operator(operator: str, entity_value: Any, filter_value: Any) -> bool:
    if operator == "$eq":
        if filter_value is MISSING:
            return entity_value is MISSING
        return entity_value == filter_value
    elif operator == "$ne":
        if filter_value is MISSING:
            return entity_value is not MISSING
        return entity_value != filter_value
    elif operator in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(entity_value, filter_value, operator)
    elif operator == "$in":
        return entity_value is not MISSING and entity_value in filter_value
    elif operator == "$nin":
        return entity_value is MISSING or entity_value not in filter_value
    elif operator == "$regex":
        return isinstance(entity_value, str) and bool(
            _to_pattern(filter_value).search(entity_value)
        )
    elif operator == "$exists":
        return (entity_value is not MISSING) == bool(filter_value)
    elif operator == "$contains":
        return _contains(entity_value, filter_value, any_of=False)
    elif operator == "$containsAny":
        return _contains(entity_value, filter_value, any_of=True)
    elif operator == "$size":
        return isinstance(entity_value, list) and len(entity_value) == filter_value
    else:
        raise UnsupportedOperatorException(f"Unsupported query operator: {operator}")


def match_value(entity_value: Any, condition: Any) -> bool:
    """Match one field value against a literal or an operator mapping."""
    if is_operator_mapping(condition):
        return all(
            check_operator(operator, entity_value, operand)
            for operator, operand in condition.items()
        )
    return entity_value == condition


def resolve_path(document: Dict[str, Any], field_path: str) -> List[Any]:
    """
    Collect every value a dotted path reaches in ``document``.

    A list met before the last segment fans out over its mapping elements,
    so ``addresses.city`` yields the city of each address. Returns
    ``[MISSING]`` when the path reaches nothing.
    """
    values: List[Any] = [document]
    for part in split_path(field_path):
        reached = []
        for value in values:
            if isinstance(value, dict):
                if part in value:
                    reached.append(value[part])
            elif isinstance(value, list):
                reached.extend(
                    item[part]
                    for item in value
                    if isinstance(item, dict) and part in item
                )
        values = reached
    return values or [MISSING]


def match_document(document: Dict[str, Any], query: Mapping[str, Any]) -> bool:
    """True when ``document`` satisfies the normalized ``query``."""
    for key, condition in query.items():
        if key == "$and":
            if not all(match_document(document, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(match_document(document, sub) for sub in condition):
                return False
        elif not any(
            match_value(value, condition) for value in resolve_path(document, key)
        ):
            return False
    return True
