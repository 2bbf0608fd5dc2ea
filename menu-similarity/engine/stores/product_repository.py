"""
Product Repository: typed read access to scraped product rows.

The scraper owns the ``products`` table; this side only reads it, plus
the one destructive path a re-scrape needs (clearing a dispensary's
catalog), which also drops the cleared products' embeddings.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from config.settings import DISPENSARIES_TABLE, IN_FILTER_CHUNK, PAGE_SIZE, PRODUCTS_TABLE
from stores.embedding_store import EmbeddingStore
from stores.paging import chunked, select_all

logger = logging.getLogger("store")


@dataclass
class Product:
    id: str
    name: str
    price: str | None = None
    weight: str | None = None
    dispensary_id: str | None = None
    dispensary_name: str | None = None
    scraped_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def format_price(value: Any) -> str | None:
    """``15`` -> ``"$15.00"``; strings are passed through untouched."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return f"${float(value):.2f}"


def format_weight(value: Any, unit: str | None) -> str | None:
    """``(3.5, "g")`` -> ``"3.5g"``, ``(1.0, "oz")`` -> ``"1oz"``."""
    if value is None or value == "":
        return None
    try:
        number = f"{float(value):g}"
    except (TypeError, ValueError):
        number = str(value).strip()
    return f"{number}{(unit or '').strip()}"


def product_from_row(
    row: dict[str, Any],
    dispensary_names: dict[str, str] | None = None,
) -> Product:
    dispensary_id = row.get("dispensary_id")
    dispensary_id = str(dispensary_id) if dispensary_id is not None else None
    return Product(
        id=str(row["id"]),
        name=(row.get("name") or "").strip(),
        price=format_price(row.get("sale_price")),
        weight=format_weight(row.get("weight_value"), row.get("weight_unit")),
        dispensary_id=dispensary_id,
        dispensary_name=(dispensary_names or {}).get(dispensary_id or ""),
        scraped_at=row.get("scraped_at"),
    )


class ProductRepository(abc.ABC):

    @abc.abstractmethod
    def get(self, product_id: str) -> Product | None:
        ...

    @abc.abstractmethod
    def get_many(self, product_ids: Iterable[str]) -> dict[str, Product]:
        """Products keyed by id; unknown ids are simply absent."""
        ...

    @abc.abstractmethod
    def list_ids(self, limit: int | None = None) -> list[str]:
        ...

    @abc.abstractmethod
    def delete_for_dispensary(self, dispensary_id: str) -> list[str]:
        """Remove a dispensary's products and their embeddings; return the ids."""
        ...


class SupabaseProductRepository(ProductRepository):

    _COLUMNS = "id, name, sale_price, weight_value, weight_unit, dispensary_id, scraped_at"

    def __init__(
        self,
        db: Any,
        *,
        embeddings: EmbeddingStore | None = None,
        table: str = PRODUCTS_TABLE,
        dispensaries_table: str = DISPENSARIES_TABLE,
        page_size: int = PAGE_SIZE,
        chunk_size: int = IN_FILTER_CHUNK,
    ) -> None:
        self.db = db
        self.embeddings = embeddings
        self.table = table
        self.dispensaries_table = dispensaries_table
        self.page_size = page_size
        self.chunk_size = chunk_size

    def _dispensary_names(self, dispensary_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({d for d in dispensary_ids if d})
        names: dict[str, str] = {}
        for chunk in chunked(ids, self.chunk_size):
            result = (
                self.db.table(self.dispensaries_table)
                .select("id, name")
                .in_("id", list(chunk))
                .execute()
            )
            for row in result.data or []:
                names[str(row["id"])] = row.get("name") or str(row["id"])
        return names

    def get(self, product_id: str) -> Product | None:
        return self.get_many([product_id]).get(str(product_id))

    def get_many(self, product_ids: Iterable[str]) -> dict[str, Product]:
        ids = list(dict.fromkeys(str(p) for p in product_ids))
        rows: list[dict[str, Any]] = []
        for chunk in chunked(ids, self.chunk_size):
            result = (
                self.db.table(self.table)
                .select(self._COLUMNS)
                .in_("id", list(chunk))
                .execute()
            )
            rows.extend(result.data or [])

        names = self._dispensary_names(
            str(r["dispensary_id"]) for r in rows if r.get("dispensary_id") is not None
        )
        return {str(r["id"]): product_from_row(r, names) for r in rows}

    def list_ids(self, limit: int | None = None) -> list[str]:
        if limit is not None and limit <= 0:
            return []
        ids: list[str] = []
        for row in select_all(
            self.db, self.table, "id", order="id", page_size=self.page_size,
        ):
            ids.append(str(row["id"]))
            if limit is not None and len(ids) >= limit:
                break
        return ids

    def delete_for_dispensary(self, dispensary_id: str) -> list[str]:
        result = (
            self.db.table(self.table)
            .select("id")
            .eq("dispensary_id", dispensary_id)
            .execute()
        )
        product_ids = [str(r["id"]) for r in result.data or []]
        if not product_ids:
            return []

        # Embeddings go first so a failure never leaves orphaned vectors.
        if self.embeddings is not None:
            self.embeddings.delete_for_products(product_ids)

        for chunk in chunked(product_ids, self.chunk_size):
            self.db.table(self.table).delete().in_("id", list(chunk)).execute()

        logger.info(
            "Cleared %d products for dispensary %s", len(product_ids), dispensary_id,
        )
        return product_ids
