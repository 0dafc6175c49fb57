# src/async_filestore/base/utils.py
import uuid
from dataclasses import is_dataclass, asdict
from typing import Any, Dict, List, Tuple


class _Missing:
    """
    Sentinel for a field that is absent from a document.

    ``None`` means "present with a null value"; ``MISSING`` means the key does
    not exist at all. The engine matcher keeps the two apart.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Missing, ())


MISSING = _Missing()


def generate_id() -> str:
    """Generate a new unique ID for documents."""
    return str(uuid.uuid4())


def split_path(field_path: str) -> List[str]:
    return field_path.split(".")


def get_nested_value(document: Dict[str, Any], field_path: str) -> Any:
    """
    Get a value from a nested field using dot notation.

    Returns MISSING when any segment of the path is absent or when an
    intermediate value is not a mapping.
    """
    curr: Any = document
    for part in split_path(field_path):
        if not isinstance(curr, dict) or part not in curr:
            return MISSING
        curr = curr[part]
    return curr


def set_nested_value(document: Dict[str, Any], field_path: str, value: Any) -> None:
    """
    Set a value at a nested field using dot notation, creating intermediate
    mappings as needed.
    """
    parts = split_path(field_path)
    curr = document
    for part in parts[:-1]:
        if part not in curr:
            curr[part] = {}
        elif not isinstance(curr[part], dict):
            raise TypeError(
                f"Cannot set '{field_path}': '{part}' is not a mapping "
                f"(got {type(curr[part]).__name__})."
            )
        curr = curr[part]
    curr[parts[-1]] = value


def unset_nested_value(document: Dict[str, Any], field_path: str) -> bool:
    """
    Remove a value at a nested field using dot notation.
    """
    parts = split_path(field_path)
    curr = document
    for part in parts[:-1]:
        if part not in curr or not isinstance(curr[part], dict):
            return False
        curr = curr[part]
    if parts[-1] in curr:
        del curr[parts[-1]]
        return True
    return False


def sort_key(value: Any) -> Tuple[int, Any]:
    """
    Build a key that orders mixed-type values without raising TypeError.

    Missing and null values sort first, then booleans, numbers, strings and
    finally anything else by its string form.
    """
    if value is MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, str(value))


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to
    JSON-compatible structures before they are handed to the engine.

    Handles:
    - Pydantic BaseModel instances (dumped in json mode, by alias)
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item, returned as lists)

    Args:
        data: The data to convert

    Returns:
        The converted data, ready for storage
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        serialized = data.model_dump(mode="json", by_alias=True)
        return prepare_for_storage(serialized)

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, (list, tuple, set)):
        return [prepare_for_storage(item) for item in data]

    return data
