"""Collection helpers."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from typing import TypeVar

T = TypeVar("T")


def merge(primary: Iterable[T], secondary: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Merge two sequences, de-duplicating by ``key``.

    Items are accumulated in a single pass over ``primary`` then ``secondary``.
    When a key is seen again the stored item is replaced by the later one, but
    it keeps the position of the first occurrence.

    Args:
        primary: Items inserted first.
        secondary: Items inserted afterwards; they win on key conflicts.
        key: Extracts the identity used to detect duplicates.

    Returns:
        A new list ordered by first occurrence of each key.
    """
    merged: dict[Hashable, T] = {}
    for source in (primary, secondary):
        for item in source:
            merged[key(item)] = item
    return list(merged.values())
