from __future__ import annotations

from collections.abc import Sequence


def chunked[T](items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def split_in_half[T](items: Sequence[T]) -> list[list[T]]:
    """Split into two halves (the first one larger on odd lengths), dropping empty halves."""
    middle = (len(items) + 1) // 2
    return [half for half in (list(items[:middle]), list(items[middle:])) if half]
