# src/async_filestore/base/metadata.py
import math
from typing import Any, Dict, Mapping, Optional

from .query import DEFAULT_LIMIT


def get_metadata(options: Optional[Mapping[str, Any]], count: int) -> Dict[str, Any]:
    """
    Build the metadata block returned alongside find results.

    Args:
        options: The query options passed from the host, such as page, limit, skip.
        count: The number of documents matching the query, before pagination.

    Returns:
        The options (minus ``skip``) plus ``page``, ``offset``, ``totalCount``,
        ``totalPages`` and, where they exist, ``nextPage`` and ``prevPage``.
    """
    options = dict(options or {})
    limit = options.get("limit") or DEFAULT_LIMIT

    metadata = {k: v for k, v in options.items() if k != "skip"}
    metadata["limit"] = limit
    metadata["page"] = options.get("page") or 1
    metadata["offset"] = options.get("skip") or 0
    metadata["totalCount"] = count
    metadata["totalPages"] = math.ceil(count / limit)

    if metadata["page"] < metadata["totalPages"]:
        metadata["nextPage"] = metadata["page"] + 1
    if 1 < metadata["page"] <= metadata["totalPages"]:
        metadata["prevPage"] = metadata["page"] - 1

    return metadata
