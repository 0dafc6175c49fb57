# src/async_filestore/base/projection.py
import logging
from functools import singledispatch
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union, overload

from .exceptions import ProjectionValidationException
from .utils import MISSING, split_path

log = logging.getLogger(__name__)

ID_FIELD = "_id"

ProjectionSpec = Union[Sequence[str], Mapping[str, Any]]
ProjectionTree = Dict[str, Any]


@singledispatch
def _spec_to_mapping(spec: Any) -> Dict[str, int]:
    raise TypeError(
        f"Projection must be a list of field names or a mapping, "
        f"got {type(spec).__name__}"
    )


@_spec_to_mapping.register(list)
@_spec_to_mapping.register(tuple)
def _(spec: Sequence[str]) -> Dict[str, int]:
    mapping = {name: 1 for name in spec}
    if ID_FIELD not in mapping:
        mapping[ID_FIELD] = 1
    return mapping


@_spec_to_mapping.register(dict)
def _(spec: Mapping[str, Any]) -> Dict[str, int]:
    return {name: 1 if flag else 0 for name, flag in spec.items()}


def expand_paths(mapping: Mapping[str, int]) -> ProjectionTree:
    """
    Expand dotted keys into a nested tree, merging shared prefixes.

    ``{"a.b": 1, "a.c": 1}`` becomes ``{"a": {"b": 1, "c": 1}}``. When two
    keys describe the same path, the later one replaces the earlier one.
    """
    tree: ProjectionTree = {}
    for field_path, flag in mapping.items():
        parts = split_path(field_path)
        node = tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = flag
    return tree


def _leaf_values(tree: ProjectionTree, top: bool = True) -> List[int]:
    values = []
    for key, value in tree.items():
        if top and key == ID_FIELD:
            continue
        if isinstance(value, dict):
            values.extend(_leaf_values(value, top=False))
        else:
            values.append(value)
    return values


class Projection:
    """A parsed projection, ready to be applied to documents."""

    def __init__(self, tree: ProjectionTree, exclusion: bool):
        self.tree = tree
        self.exclusion = exclusion

    @classmethod
    def from_spec(cls, spec: Optional[ProjectionSpec]) -> Optional["Projection"]:
        """
        Parse a projection spec. Returns None for an empty spec.

        Raises:
            ProjectionValidationException: If the spec mixes 0 and 1 leaves
                on fields other than ``_id``.
        """
        if not spec:
            return None

        tree = expand_paths(_spec_to_mapping(spec))
        leaves = set(_leaf_values(tree))
        if leaves == {0, 1}:
            raise ProjectionValidationException(
                f"Projection {spec!r} mixes inclusion and exclusion."
            )
        if leaves:
            exclusion = 0 in leaves
        else:
            exclusion = tree.get(ID_FIELD) == 0
        log.debug(
            f"Parsed projection {tree!r} "
            f"({'exclusion' if exclusion else 'inclusion'} mode)"
        )
        return cls(tree, exclusion)

    def apply(self, document: Dict[str, Any]) -> Dict[str, Any]:
        if self.exclusion:
            return self._exclude(document, self.tree, top=True)
        return self._include(document, self.tree, top=True)

    def apply_many(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self.apply(document) for document in documents]

    def _include(
        self, document: Dict[str, Any], tree: ProjectionTree, top: bool = False
    ) -> Dict[str, Any]:
        result = {}
        for key, value in document.items():
            if top and key == ID_FIELD:
                result[key] = value
                continue
            if key not in tree:
                continue
            sub_tree = tree[key]
            if isinstance(sub_tree, dict):
                nested = self._include_nested(value, sub_tree)
                if nested is not MISSING:
                    result[key] = nested
            elif sub_tree:
                result[key] = value
        return result

    def _include_nested(self, value: Any, sub_tree: ProjectionTree) -> Any:
        if isinstance(value, dict):
            return self._include(value, sub_tree)
        if isinstance(value, list):
            return [
                self._include(item, sub_tree)
                for item in value
                if isinstance(item, dict)
            ]
        # A scalar has no sub-fields to select.
        return MISSING

    def _exclude(
        self, document: Dict[str, Any], tree: ProjectionTree, top: bool = False
    ) -> Dict[str, Any]:
        result = {}
        for key, value in document.items():
            if top and key == ID_FIELD:
                result[key] = value
                continue
            sub_tree = tree.get(key, MISSING)
            if sub_tree is MISSING:
                result[key] = value
            elif isinstance(sub_tree, dict):
                result[key] = self._exclude_nested(value, sub_tree)
            elif sub_tree:
                result[key] = value
        return result

    def _exclude_nested(self, value: Any, sub_tree: ProjectionTree) -> Any:
        if isinstance(value, dict):
            return self._exclude(value, sub_tree)
        if isinstance(value, list):
            return [
                self._exclude(item, sub_tree) if isinstance(item, dict) else item
                for item in value
            ]
        return value

    def __repr__(self) -> str:
        mode = "exclusion" if self.exclusion else "inclusion"
        return f"Projection({self.tree!r}, {mode})"


@overload
def project(
    spec: Optional[ProjectionSpec], documents: Dict[str, Any]
) -> Dict[str, Any]: ...


@overload
def project(
    spec: Optional[ProjectionSpec], documents: List[Dict[str, Any]]
) -> List[Dict[str, Any]]: ...


def project(spec, documents):
    """
    Apply a projection spec to one document or a list of documents.

    A list in gives a list out; a single mapping in gives a mapping out. An
    empty spec returns the input unchanged. ``_id`` is always kept.
    """
    projection = Projection.from_spec(spec)
    if projection is None:
        return documents
    if isinstance(documents, list):
        return projection.apply_many(documents)
    return projection.apply(documents)
