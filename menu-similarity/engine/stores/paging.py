"""Paged reads and chunked filters over the Supabase query builder."""

from __future__ import annotations

from typing import Any, Iterator, Sequence, TypeVar

from config.settings import PAGE_SIZE

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def select_all(
    db: Any,
    table: str,
    columns: str,
    *,
    order: str,
    page_size: int = PAGE_SIZE,
) -> Iterator[dict[str, Any]]:
    """Yield every row of *table*, one ``range()`` page at a time.

    *order* must be a unique column so pages never overlap or skip rows.
    """
    start = 0
    while True:
        result = (
            db.table(table)
            .select(columns)
            .order(order)
            .range(start, start + page_size - 1)
            .execute()
        )
        rows = result.data or []
        yield from rows
        if len(rows) < page_size:
            return
        start += page_size
