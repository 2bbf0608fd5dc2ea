"""
Embedding Store: one vector per product, keyed by product id.

Rows live in ``product_embeddings``::

    product_id       text primary key  -> products.id
    embedding        bytea             little-endian float32 (vector_codec)
    embedding_model  text              model tag the vector came from
    created_at       timestamptz       set on every (re)write

PostgREST moves bytea as ``\\x<hex>`` text in both directions.
"""

from __future__ import annotations

import abc
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

import numpy as np

from config.settings import EMBEDDINGS_TABLE, IN_FILTER_CHUNK, PAGE_SIZE, PRODUCTS_TABLE
from stores.paging import chunked, select_all
from vector_codec import deserialize, serialize

logger = logging.getLogger("store")


@dataclass
class EmbeddingRecord:
    product_id: str
    vector: np.ndarray
    model_tag: str
    created_at: str | None = None

    @property
    def dimensions(self) -> int:
        return int(self.vector.shape[0])


class EmbeddingStore(abc.ABC):
    """Contract the similarity engine and orchestrator rely on.

    Invariant: at most one record per product id.  ``upsert`` replaces
    vector, model tag and timestamp together; there is no partial update.
    """

    @abc.abstractmethod
    def upsert(self, product_id: str, vector: np.ndarray, model_tag: str) -> None:
        ...

    @abc.abstractmethod
    def get_record(self, product_id: str) -> EmbeddingRecord | None:
        ...

    def get(self, product_id: str) -> np.ndarray | None:
        record = self.get_record(product_id)
        return record.vector if record else None

    @abc.abstractmethod
    def list_missing(self, limit: int | None = None) -> list[str]:
        """Product ids with no embedding, in storage order, capped at *limit*."""
        ...

    @abc.abstractmethod
    def delete_for_products(self, product_ids: Iterable[str]) -> int:
        ...

    def delete_for_product(self, product_id: str) -> None:
        self.delete_for_products([product_id])

    @abc.abstractmethod
    def iter_records(self) -> Iterator[EmbeddingRecord]:
        """Full linear scan of every stored record."""
        ...

    @abc.abstractmethod
    def list_product_ids(self) -> list[str]:
        ...

    @abc.abstractmethod
    def count_by_model(self) -> dict[str, int]:
        ...


def to_bytea(data: bytes) -> str:
    return "\\x" + data.hex()


def from_bytea(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str) and value.startswith("\\x"):
        return bytes.fromhex(value[2:])
    raise ValueError(f"Unrecognised bytea value: {str(value)[:40]!r}")


class SupabaseEmbeddingStore(EmbeddingStore):
    """Embedding Store over the ``product_embeddings`` table."""

    _COLUMNS = "product_id, embedding, embedding_model, created_at"

    def __init__(
        self,
        db: Any,
        *,
        table: str = EMBEDDINGS_TABLE,
        products_table: str = PRODUCTS_TABLE,
        page_size: int = PAGE_SIZE,
        chunk_size: int = IN_FILTER_CHUNK,
    ) -> None:
        self.db = db
        self.table = table
        self.products_table = products_table
        self.page_size = page_size
        self.chunk_size = chunk_size

    def _to_record(self, row: dict[str, Any]) -> EmbeddingRecord:
        return EmbeddingRecord(
            product_id=str(row["product_id"]),
            vector=deserialize(from_bytea(row["embedding"])),
            model_tag=row.get("embedding_model") or "",
            created_at=row.get("created_at"),
        )

    def upsert(self, product_id: str, vector: np.ndarray, model_tag: str) -> None:
        if vector is None or len(vector) == 0:
            raise ValueError(f"Refusing to store an empty embedding for product {product_id}")
        row = {
            "product_id": product_id,
            "embedding": to_bytea(serialize(vector)),
            "embedding_model": model_tag,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.db.table(self.table).upsert(row, on_conflict="product_id").execute()

    def get_record(self, product_id: str) -> EmbeddingRecord | None:
        result = (
            self.db.table(self.table)
            .select(self._COLUMNS)
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return self._to_record(result.data[0])

    def list_product_ids(self) -> list[str]:
        return [
            str(row["product_id"])
            for row in select_all(
                self.db, self.table, "product_id",
                order="product_id", page_size=self.page_size,
            )
        ]

    def list_missing(self, limit: int | None = None) -> list[str]:
        if limit is not None and limit <= 0:
            return []
        embedded = set(self.list_product_ids())
        missing: list[str] = []
        for row in select_all(
            self.db, self.products_table, "id",
            order="id", page_size=self.page_size,
        ):
            product_id = str(row["id"])
            if product_id in embedded:
                continue
            missing.append(product_id)
            if limit is not None and len(missing) >= limit:
                break
        return missing

    def delete_for_products(self, product_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(product_ids))
        deleted = 0
        for chunk in chunked(ids, self.chunk_size):
            result = (
                self.db.table(self.table)
                .delete()
                .in_("product_id", list(chunk))
                .execute()
            )
            deleted += len(result.data or [])
        if deleted:
            logger.info("Deleted %d embeddings", deleted)
        return deleted

    def iter_records(self) -> Iterator[EmbeddingRecord]:
        for row in select_all(
            self.db, self.table, self._COLUMNS,
            order="product_id", page_size=self.page_size,
        ):
            yield self._to_record(row)

    def count_by_model(self) -> dict[str, int]:
        counts = Counter(
            row.get("embedding_model") or "unknown"
            for row in select_all(
                self.db, self.table, "product_id, embedding_model",
                order="product_id", page_size=self.page_size,
            )
        )
        return dict(counts)
