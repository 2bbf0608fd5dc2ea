"""
Bulk embedding (re)generation.

  backfill_missing: products with no embedding yet (initial load, and
                    new products after each scrape)
  regenerate_all:   every product, after switching EMBEDDING_MODEL;
                    vectors from different models are not comparable

Both feed product ids through the RateLimiter with a per-item processor
that loads the product, formats its text, embeds it and upserts the
vector.  Per-item failures are logged and counted, never raised, so a
long job always finishes with a success count.

The embedding text is ``"<name> <weight>"``.  Changing that format makes
old vectors incomparable and needs a ``regenerate_all``.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

from config.settings import BACKFILL_LIMIT, DRY_RUN, PROGRESS_EVERY
from embedding_client import EmbeddingClient
from rate_limiter import RateLimiter
from stores.embedding_store import EmbeddingStore
from stores.product_repository import ProductRepository

logger = logging.getLogger("orchestrator")


def format_product_text(name: str, weight: str | None = None) -> str:
    """Canonical embedding input for a product."""
    text = (name or "").strip()
    if weight and weight.strip():
        text = f"{text} {weight.strip()}"
    return text.strip()


class EmbeddingOrchestrator:
    """Drives bulk jobs.  One instance per process, sharing one limiter."""

    def __init__(
        self,
        client: EmbeddingClient,
        store: EmbeddingStore,
        products: ProductRepository,
        rate_limiter: RateLimiter,
        *,
        progress_every: int = PROGRESS_EVERY,
        dry_run: bool = DRY_RUN,
    ) -> None:
        self.client = client
        self.store = store
        self.products = products
        self.rate_limiter = rate_limiter
        self.progress_every = max(1, progress_every)
        self.dry_run = dry_run
        # Size of the most recent bulk job, for run tracking
        self.last_total = 0

    @property
    def model_tag(self) -> str:
        return self.client.model

    async def generate_embedding_for_product(self, product_id: str) -> bool:
        """Embed one product and store the vector.  True on success."""
        try:
            product = self.products.get(product_id)
        except Exception as exc:
            logger.warning("Failed to load product %s: %s", product_id, exc)
            return False
        if product is None:
            logger.error("Product with ID %s not found", product_id)
            return False

        text = format_product_text(product.name, product.weight)
        vector = await self.client.embed(text)
        if vector is None:
            logger.error("Failed to generate embedding for product %s", product_id)
            return False

        if self.dry_run:
            logger.info(
                "[DRY RUN] Would store %d-dim embedding for %s (%r)",
                len(vector), product_id, text,
            )
            return True

        try:
            self.store.upsert(product.id, vector, self.model_tag)
        except Exception as exc:
            logger.warning("Error storing embedding for product %s: %s", product_id, exc)
            return False
        return True

    async def backfill_missing(
        self,
        limit: int = BACKFILL_LIMIT,
        process_all: bool = False,
    ) -> int:
        product_ids = self.store.list_missing(None if process_all else limit)
        return await self._run(product_ids, "backfill")

    async def regenerate_all(
        self,
        limit: int = BACKFILL_LIMIT,
        process_all: bool = False,
    ) -> int:
        product_ids = self.products.list_ids(None if process_all else limit)
        return await self._run(product_ids, "regenerate")

    def prune_orphans(self) -> int:
        """Delete embeddings whose product no longer exists."""
        embedded = self.store.list_product_ids()
        if not embedded:
            return 0
        existing = set(self.products.get_many(embedded))
        orphans = [pid for pid in embedded if pid not in existing]
        if not orphans:
            logger.info("No orphaned embeddings")
            return 0
        if self.dry_run:
            logger.info("[DRY RUN] Would delete %d orphaned embeddings", len(orphans))
            return len(orphans)
        return self.store.delete_for_products(orphans)

    async def _run(self, product_ids: Sequence[str], label: str) -> int:
        total = len(product_ids)
        self.last_total = total
        if total == 0:
            logger.info("[%s] Nothing to embed", label)
            return 0

        logger.info(
            "[%s] Embedding %d products with %s (%d calls/min, batches of %d)",
            label, total, self.model_tag,
            self.rate_limiter.max_calls_per_minute, self.rate_limiter.batch_size,
        )
        start = time.time()

        def _progress(done: int, of: int) -> None:
            if done % self.progress_every == 0 or done == of:
                logger.info("[%s] Progress: %d/%d", label, done, of)

        succeeded = await self.rate_limiter.process_batch(
            product_ids, self.generate_embedding_for_product, _progress,
        )

        logger.info(
            "[%s] Done, %d/%d embedded in %.1f min",
            label, succeeded, total, (time.time() - start) / 60,
        )
        return succeeded
