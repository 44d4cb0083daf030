"""
Keyed de-duplication shared by the local loader and the remote pull path.
"""

from typing import Callable, Iterable, List, TypeVar

T = TypeVar("T")


def dedupe_by_key(items: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """
    Keep the first item seen for every key, preserving order.

    Idempotent: feeding the result back in returns an equal list.
    """
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


def merge_by_key(preferred: Iterable[T], fallback: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """
    Union of two collections where `preferred` wins on shared keys.

    Rows only present in `fallback` are kept, after the preferred ones.
    """
    return dedupe_by_key(list(preferred) + list(fallback), key)
