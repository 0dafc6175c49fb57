# src/async_filestore/base/update.py

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Mapping, Union

from .exceptions import UnsupportedOperatorException
from .matcher import match_document, match_value
from .query import is_operator_mapping, normalize_value, prepare_query
from .utils import (
    MISSING,
    get_nested_value,
    prepare_for_storage,
    set_nested_value,
    unset_nested_value,
)


# --- Agnostic Update Operation Classes ---
@dataclass
class UpdateOperation:
    field_path: str


@dataclass
class SetOperation(UpdateOperation):
    value: Any


@dataclass
class UnsetOperation(UpdateOperation):
    pass


@dataclass
class IncrementOperation(UpdateOperation):
    amount: Union[int, float]


@dataclass
class MultiplyOperation(UpdateOperation):
    factor: Union[int, float]


@dataclass
class MinOperation(UpdateOperation):
    value: Any


@dataclass
class MaxOperation(UpdateOperation):
    value: Any


@dataclass
class PushOperation(UpdateOperation):
    items: List[Any]


@dataclass
class PopOperation(UpdateOperation):
    position: Literal[-1, 1]


@dataclass
class PullOperation(UpdateOperation):
    value_or_condition: Any


# --- End Agnostic Update Operation Classes ---


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_number(value: Any, operator: str) -> None:
    if not _is_number(value):
        raise TypeError(
            f"{operator} amount must be numeric, got {type(value).__name__}."
        )


class Update:
    """
    An ordered list of update operations, built either fluently
    (``Update().set("name", "x").increment("age", 1)``) or from a
    MongoDB-style expression with :meth:`from_dict`.
    """

    # Maps expression operators to builder methods.
    OPERATORS = {
        "$set": "set",
        "$unset": "unset",
        "$inc": "increment",
        "$mul": "mul",
        "$min": "min",
        "$max": "max",
        "$push": "push",
        "$pop": "pop",
        "$pull": "pull",
    }

    def __init__(self) -> None:
        self._operations: List[UpdateOperation] = []
        self._logger = logging.getLogger(__name__)

    @classmethod
    def from_dict(cls, expression: Mapping[str, Any]) -> "Update":
        """
        Parse a MongoDB-style update expression.

        Raises:
            UnsupportedOperatorException: For any operator outside ``OPERATORS``.
            TypeError: If an operator's operand is not a mapping.
        """
        update = cls()
        for operator, operand in (expression or {}).items():
            method_name = cls.OPERATORS.get(operator)
            if method_name is None:
                raise UnsupportedOperatorException(
                    f"Unsupported update operator: {operator}"
                )
            if not isinstance(operand, Mapping):
                raise TypeError(
                    f"Operand for {operator} must be a mapping of field paths, "
                    f"got {type(operand).__name__}."
                )
            method = getattr(update, method_name)
            for field_path, value in operand.items():
                if operator == "$unset":
                    method(field_path)
                elif operator == "$push":
                    update._push_expression(field_path, value)
                else:
                    method(field_path, value)
        return update

    def _check_field_conflict(self, field_path: str) -> None:
        """
        Check if the field already has any operation applied to it or conflicts
        with parent/child fields.
        """
        for op in self._operations:
            existing_path = op.field_path

            if existing_path == field_path:
                message = (
                    f"Field '{field_path}' already has an operation. Multiple "
                    f"operations on the same field are not allowed in a single update."
                )
            elif field_path.startswith(existing_path + "."):
                message = (
                    f"Field '{field_path}' conflicts with existing operation on "
                    f"parent field '{existing_path}'."
                )
            elif existing_path.startswith(field_path + "."):
                message = (
                    f"Field '{field_path}' conflicts with existing operation on "
                    f"child field '{existing_path}'."
                )
            else:
                continue

            self._logger.warning(f"Field conflict detected: {message}")
            raise ValueError(message)

    # --- Update Methods ---
    def set(self, field_path: str, value: Any) -> "Update":
        self._check_field_conflict(field_path)
        self._operations.append(
            SetOperation(field_path=field_path, value=prepare_for_storage(value))
        )
        return self

    def unset(self, field_path: str) -> "Update":
        self._check_field_conflict(field_path)
        self._operations.append(UnsetOperation(field_path=field_path))
        return self

    def increment(self, field_path: str, amount: Union[int, float] = 1) -> "Update":
        self._check_field_conflict(field_path)
        _require_number(amount, "Increment")
        self._operations.append(
            IncrementOperation(field_path=field_path, amount=amount)
        )
        return self

    def decrement(self, field_path: str, amount: Union[int, float] = 1) -> "Update":
        _require_number(amount, "Decrement")
        return self.increment(field_path, -amount)

    def mul(self, field_path: str, factor: Union[int, float]) -> "Update":
        self._check_field_conflict(field_path)
        _require_number(factor, "Multiply")
        self._operations.append(MultiplyOperation(field_path=field_path, factor=factor))
        return self

    def min(self, field_path: str, value: Any) -> "Update":
        self._check_field_conflict(field_path)
        self._operations.append(MinOperation(field_path=field_path, value=value))
        return self

    def max(self, field_path: str, value: Any) -> "Update":
        self._check_field_conflict(field_path)
        self._operations.append(MaxOperation(field_path=field_path, value=value))
        return self

    def push(self, field_path: str, *items: Any) -> "Update":
        self._check_field_conflict(field_path)
        self._operations.append(
            PushOperation(
                field_path=field_path, items=[prepare_for_storage(i) for i in items]
            )
        )
        return self

    def _push_expression(self, field_path: str, value: Any) -> None:
        if is_operator_mapping(value):
            modifiers = set(value) - {"$each"}
            if modifiers:
                raise UnsupportedOperatorException(
                    f"Unsupported $push modifier(s) for '{field_path}': "
                    f"{', '.join(sorted(modifiers))}"
                )
            self.push(field_path, *value["$each"])
        else:
            self.push(field_path, value)

    def pop(self, field_path: str, position: Literal[-1, 1] = 1) -> "Update":
        self._check_field_conflict(field_path)
        if position not in (1, -1):
            raise ValueError(
                f"Position for pop must be 1 (last) or -1 (first), got {position}."
            )
        self._operations.append(PopOperation(field_path=field_path, position=position))
        return self

    def pull(self, field_path: str, value_or_condition: Any) -> "Update":
        """Adds a 'pull' operation (removes matching items from an array)."""
        self._check_field_conflict(field_path)
        if not is_operator_mapping(value_or_condition):
            value_or_condition = prepare_for_storage(value_or_condition)
        self._operations.append(
            PullOperation(field_path=field_path, value_or_condition=value_or_condition)
        )
        return self

    # --- Interpreter ---
    def apply(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Apply every operation to a copy of each document, in order.
        The input documents are left untouched.
        """
        results = []
        for document in documents:
            updated = copy.deepcopy(document)
            for operation in self._operations:
                _apply_operation(updated, operation)
            results.append(updated)
        self._logger.debug(f"Applied {self!r} to {len(results)} document(s)")
        return results

    # --- Build and Utility Methods ---
    def build(self) -> List[UpdateOperation]:
        return list(self._operations)

    def __repr__(self) -> str:
        ops_repr = ", ".join(repr(op) for op in self._operations)
        return f"Update([{ops_repr}])"

    def __bool__(self) -> bool:
        return bool(self._operations)

    def __len__(self) -> int:
        return len(self._operations)


def _current_list(document: Dict[str, Any], operation: UpdateOperation) -> Any:
    current = get_nested_value(document, operation.field_path)
    if current is not MISSING and not isinstance(current, list):
        raise TypeError(
            f"Cannot apply {type(operation).__name__} to non-array field "
            f"'{operation.field_path}' (got {type(current).__name__})."
        )
    return current


def _pull_matches(item: Any, condition: Any) -> bool:
    if is_operator_mapping(condition):
        return match_value(item, normalize_value(condition))
    if isinstance(condition, dict) and isinstance(item, dict):
        return match_document(item, prepare_query(condition))
    return item == condition


def _apply_operation(document: Dict[str, Any], operation: UpdateOperation) -> None:
    path = operation.field_path

    if isinstance(operation, SetOperation):
        set_nested_value(document, path, copy.deepcopy(operation.value))

    elif isinstance(operation, UnsetOperation):
        unset_nested_value(document, path)

    elif isinstance(operation, IncrementOperation):
        current = get_nested_value(document, path)
        if current is MISSING:
            set_nested_value(document, path, operation.amount)
        elif not _is_number(current):
            raise TypeError(
                f"Cannot increment non-numeric field '{path}' "
                f"(got {type(current).__name__})."
            )
        else:
            set_nested_value(document, path, current + operation.amount)

    elif isinstance(operation, MultiplyOperation):
        current = get_nested_value(document, path)
        if current is MISSING:
            set_nested_value(document, path, 0)
        elif not _is_number(current):
            raise TypeError(
                f"Cannot multiply non-numeric field '{path}' "
                f"(got {type(current).__name__})."
            )
        else:
            set_nested_value(document, path, current * operation.factor)

    elif isinstance(operation, (MinOperation, MaxOperation)):
        current = get_nested_value(document, path)
        if current is MISSING:
            set_nested_value(document, path, operation.value)
        else:
            try:
                replace = (
                    operation.value < current
                    if isinstance(operation, MinOperation)
                    else operation.value > current
                )
            except TypeError as e:
                raise TypeError(
                    f"Cannot compare {operation.value!r} with field '{path}': {e}"
                ) from e
            if replace:
                set_nested_value(document, path, operation.value)

    elif isinstance(operation, PushOperation):
        current = _current_list(document, operation)
        items = copy.deepcopy(operation.items)
        if current is MISSING:
            set_nested_value(document, path, items)
        else:
            current.extend(items)

    elif isinstance(operation, PopOperation):
        current = _current_list(document, operation)
        if current:
            if operation.position == 1:
                current.pop()
            else:
                current.pop(0)

    elif isinstance(operation, PullOperation):
        current = _current_list(document, operation)
        if current is not MISSING:
            set_nested_value(
                document,
                path,
                [
                    item
                    for item in current
                    if not _pull_matches(item, operation.value_or_condition)
                ],
            )

    else:
        raise UnsupportedOperatorException(
            f"Unsupported update operation: {type(operation).__name__}"
        )


def apply_update(
    update: Union[Update, Mapping[str, Any]], documents: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Apply an update expression to already-fetched documents and return the
    mutated copies. Unknown operators are rejected before any document is
    touched.
    """
    if not isinstance(update, Update):
        update = Update.from_dict(update)
    return update.apply(documents)
