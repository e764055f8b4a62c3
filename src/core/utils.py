"""
Core Utility Functions.

Common utilities used across the application.
"""

import asyncio
import math
from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple, TypeVar

import numpy as np


T = TypeVar("T")


def convert_numpy(obj: Any) -> Any:
    """
    Convert numpy types to Python native types for JSON serialization.

    Recursively converts numpy arrays, scalars, and nested structures
    to their Python equivalents.

    Examples:
        >>> convert_numpy(np.int64(42))
        42
        >>> convert_numpy(np.array([1, 2, 3]))
        [1, 2, 3]
        >>> convert_numpy({'a': np.float32(1.5)})
        {'a': 1.5}
    """
    if isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {convert_numpy(k): convert_numpy(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [convert_numpy(v) for v in obj]
    elif isinstance(obj, tuple):
        return tuple(convert_numpy(v) for v in obj)
    elif isinstance(obj, set):
        return list(convert_numpy(v) for v in obj)
    return obj


def normalize_string_set(items: Iterable[str]) -> Set[str]:
    """
    Normalize strings to a set of lowercase, stripped strings.

    Args:
        items: Strings (may contain None, empty strings)
    """
    return {s.lower().strip() for s in items if s}


def chunk_list(items: Sequence[T], chunk_size: int) -> List[Sequence[T]]:
    """
    Split a list into chunks of specified size.

    Args:
        items: List to chunk
        chunk_size: Size of each chunk

    Returns:
        List of chunks
    """
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]


def dedupe_preserving_order(items: Iterable[T]) -> List[T]:
    """Drop repeated items, keeping the first occurrence."""
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def paginate(items: Sequence[T], page: int, per_page: int) -> Tuple[List[T], Dict[str, int]]:
    """
    Slice ``items`` for a 1-based page.

    Returns:
        (page_items, {"page", "pages", "count", "perPage"})
    """
    page = max(1, page)
    per_page = max(1, per_page)
    start = per_page * (page - 1)
    return list(items[start:start + per_page]), {
        "page": page,
        "pages": math.ceil(len(items) / per_page),
        "count": len(items),
        "perPage": per_page,
    }


async def checkpoint() -> None:
    """Yield to the event loop between CPU-bound batches."""
    await asyncio.sleep(0)
