"""
Similarity engine: linear-scan cosine search over stored embeddings.

Search flow:
  1. Scan every embedding record (skipping the excluded product).
  2. Score against the target vector; keep scores >= threshold.
  3. Attach product display fields; drop orphans and the excluded
     dispensary.
  4. Rank:
       standard:         score descending, top ``limit``
       cross-dispensary: per-dispensary queues, round-robin until
                         ``limit`` picks, then re-sorted by score

Diversification happens after threshold filtering, so a dispensary with
nothing above the threshold never gets a slot.

Two entry points produce the target vector: ``find_similar_by_text``
(query-mode embedding) and ``find_similar_by_product`` (stored vector).
Both return ``[]`` when no target vector is available.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from config.settings import SIMILARITY_LIMIT, SIMILARITY_THRESHOLD
from embedding_client import EmbeddingClient
from stores.embedding_store import EmbeddingStore
from stores.product_repository import Product, ProductRepository
from vector_codec import cosine_similarity

logger = logging.getLogger("similarity")


class EmbeddingModelMismatchError(ValueError):
    """A stored vector came from a different model than the query vector."""

    def __init__(self, product_id: str, expected: str, found: str) -> None:
        super().__init__(
            f"Embedding for product {product_id} was made with {found!r}, "
            f"query uses {expected!r}; run a full regeneration"
        )
        self.product_id = product_id
        self.expected = expected
        self.found = found


@dataclass
class SimilarityResult:
    product_id: str
    score: float
    product: Product

    def to_dict(self) -> dict[str, Any]:
        row = self.product.to_dict()
        row["score"] = round(self.score, 6)
        return row


def interleave_by_dispensary(
    candidates: Sequence[SimilarityResult],
    limit: int,
) -> list[SimilarityResult]:
    """Round-robin across dispensary groups, then re-sort by score.

    Groups keep first-seen order; each group is consumed best-first.
    """
    if limit <= 0:
        return []

    groups: "OrderedDict[str, list[SimilarityResult]]" = OrderedDict()
    for c in candidates:
        groups.setdefault(c.product.dispensary_id or "", []).append(c)
    for members in groups.values():
        members.sort(key=lambda r: r.score, reverse=True)

    picked: list[SimilarityResult] = []
    depth = 0
    while len(picked) < limit:
        took_any = False
        for members in groups.values():
            if depth < len(members):
                picked.append(members[depth])
                took_any = True
                if len(picked) >= limit:
                    break
        if not took_any:
            break
        depth += 1

    picked.sort(key=lambda r: r.score, reverse=True)
    return picked


class SimilarityEngine:
    """Read-only consumer of the Embedding Store."""

    def __init__(
        self,
        store: EmbeddingStore,
        products: ProductRepository,
        client: EmbeddingClient | None = None,
        *,
        default_threshold: float = SIMILARITY_THRESHOLD,
        default_limit: int = SIMILARITY_LIMIT,
    ) -> None:
        self.store = store
        self.products = products
        self.client = client
        self.default_threshold = default_threshold
        self.default_limit = default_limit

    def find_similar(
        self,
        target: np.ndarray,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        exclude_product_id: str | None = None,
        cross_dispensary: bool = False,
        exclude_dispensary_id: str | None = None,
        model_tag: str | None = None,
    ) -> list[SimilarityResult]:
        """Rank stored products against *target*.

        When *model_tag* is given, every scanned record must carry the
        same tag or :class:`EmbeddingModelMismatchError` is raised.
        Length mismatches raise ``DimensionMismatchError``.
        """
        limit = self.default_limit if limit is None else limit
        threshold = self.default_threshold if threshold is None else threshold
        if limit <= 0:
            return []

        scored: list[tuple[str, float]] = []
        scanned = 0
        for record in self.store.iter_records():
            if exclude_product_id is not None and record.product_id == str(exclude_product_id):
                continue
            if model_tag and record.model_tag != model_tag:
                raise EmbeddingModelMismatchError(record.product_id, model_tag, record.model_tag)
            scanned += 1
            score = cosine_similarity(target, record.vector)
            if score >= threshold:
                scored.append((record.product_id, score))

        if not scored:
            logger.info("No matches above %.2f among %d embeddings", threshold, scanned)
            return []

        details = self.products.get_many(pid for pid, _ in scored)
        candidates: list[SimilarityResult] = []
        orphans = 0
        for product_id, score in scored:
            product = details.get(product_id)
            if product is None:
                orphans += 1
                continue
            if exclude_dispensary_id is not None and product.dispensary_id == str(exclude_dispensary_id):
                continue
            candidates.append(SimilarityResult(product_id, score, product))
        if orphans:
            logger.warning("Skipped %d embeddings with no matching product", orphans)

        if cross_dispensary:
            results = interleave_by_dispensary(candidates, limit)
        else:
            # sorted() is stable: ties keep scan order
            results = sorted(candidates, key=lambda r: r.score, reverse=True)[:limit]

        logger.info(
            "Similarity: %d scanned, %d above %.2f, %d returned%s",
            scanned, len(candidates), threshold, len(results),
            " (cross-dispensary)" if cross_dispensary else "",
        )
        return results

    async def find_similar_by_text(
        self,
        text: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarityResult]:
        """Embed *text* in query mode and search.  ``[]`` if embedding fails."""
        if self.client is None:
            raise RuntimeError("SimilarityEngine was built without an EmbeddingClient")
        target = await self.client.embed(text, is_query=True)
        if target is None:
            logger.error("Failed to generate query embedding for %r", text[:80])
            return []
        return self.find_similar(
            target, limit=limit, threshold=threshold, model_tag=self.client.model,
        )

    def find_similar_by_product(
        self,
        product_id: str,
        limit: int | None = None,
        threshold: float | None = None,
        cross_dispensary: bool = False,
        exclude_dispensary_id: str | None = None,
    ) -> list[SimilarityResult]:
        """Search with a product's stored vector; the product itself is excluded.

        Returns ``[]`` if the product has no embedding yet; one is not
        generated on demand.
        """
        record = self.store.get_record(str(product_id))
        if record is None:
            logger.warning("No embedding found for product %s", product_id)
            return []
        return self.find_similar(
            record.vector,
            limit=limit,
            threshold=threshold,
            exclude_product_id=record.product_id,
            cross_dispensary=cross_dispensary,
            exclude_dispensary_id=exclude_dispensary_id,
            model_tag=record.model_tag or None,
        )
