"""Shared fixtures for the menu-similarity test suite."""

from __future__ import annotations

import math
import sys
import uuid
from pathlib import Path
from typing import Any

import numpy as np
import pytest

# Ensure the engine modules are importable from tests/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


# ---------------------------------------------------------------------------
# In-memory stand-in for the supabase-py query builder
# ---------------------------------------------------------------------------


class FakeResult:
    def __init__(self, data: list[dict[str, Any]], count: int | None = None) -> None:
        self.data = data
        self.count = count


class FakeQuery:
    """Supports the subset of the PostgREST builder the engine uses."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self._db = db
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._count: str | None = None
        self._payload: Any = None
        self._on_conflict: str | None = None
        self._filters: list = []
        self._order: str | None = None
        self._desc = False
        self._range: tuple[int, int] | None = None
        self._limit: int | None = None

    # --- operations ---
    def select(self, columns: str = "*", count: str | None = None) -> "FakeQuery":
        self._op, self._columns, self._count = "select", columns, count
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload: Any, on_conflict: str | None = None) -> "FakeQuery":
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self._op, self._payload = "update", payload
        return self

    def delete(self) -> "FakeQuery":
        self._op = "delete"
        return self

    # --- modifiers ---
    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        allowed = set(values)
        self._filters.append(lambda r: r.get(column) in allowed)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order, self._desc = column, desc
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self._range = (start, end)
        return self

    def limit(self, n: int) -> "FakeQuery":
        self._limit = n
        return self

    # --- execution ---
    def _matching(self) -> list[dict[str, Any]]:
        rows = self._db.tables.setdefault(self._table, [])
        return [r for r in rows if all(f(r) for f in self._filters)]

    def _project(self, row: dict[str, Any]) -> dict[str, Any]:
        if self._columns.strip() == "*":
            return dict(row)
        cols = [c.strip() for c in self._columns.split(",")]
        return {c: row.get(c) for c in cols}

    def execute(self) -> FakeResult:
        self._db.calls.append((self._table, self._op))
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            matched = self._matching()
            if self._order:
                matched = sorted(matched, key=lambda r: str(r.get(self._order)), reverse=self._desc)
            count = len(matched) if self._count else None
            if self._range:
                start, end = self._range
                matched = matched[start : end + 1]
            if self._limit is not None:
                matched = matched[: self._limit]
            return FakeResult([self._project(r) for r in matched], count)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in payload:
                row = {"id": str(uuid.uuid4()), **item}
                rows.append(row)
                inserted.append(dict(row))
            return FakeResult(inserted)

        if self._op == "upsert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
            written = []
            for item in payload:
                existing = next(
                    (r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None,
                )
                if existing is None:
                    existing = dict(item)
                    rows.append(existing)
                else:
                    existing.update(item)
                written.append(dict(existing))
            return FakeResult(written)

        if self._op == "update":
            matched = self._matching()
            for r in matched:
                r.update(self._payload)
            return FakeResult([dict(r) for r in matched])

        if self._op == "delete":
            matched = self._matching()
            ids = {id(r) for r in matched}
            self._db.tables[self._table] = [r for r in rows if id(r) not in ids]
            return FakeResult([dict(r) for r in matched])

        raise AssertionError(f"unsupported op {self._op}")


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.get(name, [])


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def add_dispensary(db):
    def _add(dispensary_id: str, name: str | None = None) -> dict[str, Any]:
        row = {"id": dispensary_id, "name": name or dispensary_id.replace("-", " ").title()}
        db.tables.setdefault("dispensaries", []).append(row)
        return row

    return _add


@pytest.fixture
def add_product(db):
    """Factory that inserts a products row with sensible defaults."""

    def _add(
        product_id: str,
        *,
        name: str = "Blue Dream",
        sale_price: Any = 25.0,
        weight_value: Any = 3.5,
        weight_unit: str | None = "g",
        dispensary_id: str = "planet13",
        scraped_at: str = "2026-10-01T00:00:00+00:00",
        **overrides: Any,
    ) -> dict[str, Any]:
        row = {
            "id": product_id,
            "name": name,
            "sale_price": sale_price,
            "weight_value": weight_value,
            "weight_unit": weight_unit,
            "dispensary_id": dispensary_id,
            "scraped_at": scraped_at,
        }
        row.update(overrides)
        db.tables.setdefault("products", []).append(row)
        return row

    return _add


# ---------------------------------------------------------------------------
# Time and embedding fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock whose async sleep advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeEmbeddingClient:
    """Returns canned vectors by text; unknown text yields None."""

    def __init__(self, vectors: dict[str, Any] | None = None, *, model: str = "test-model") -> None:
        self.model = model
        self.vectors = {k: np.asarray(v, dtype=np.float32) for k, v in (vectors or {}).items()}
        self.calls: list[tuple[str, bool]] = []

    async def embed(self, text: str, *, is_query: bool = False):
        self.calls.append((text, is_query))
        return self.vectors.get(text)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


def vector_with_score(score: float) -> np.ndarray:
    """2-d unit vector whose cosine with [1, 0] is *score*."""
    return np.array([score, math.sqrt(max(0.0, 1.0 - score * score))], dtype=np.float32)


TARGET = np.array([1.0, 0.0], dtype=np.float32)
