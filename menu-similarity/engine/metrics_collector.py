"""
Embedding coverage metrics: writes one row per day to embedding_metrics.

Called after each bulk job (and by ``main.py status``) to track how much
of the catalog is searchable and how many vectors are still on an old
model.  A non-zero ``stale_count`` means a model switch happened and
``regenerate --all`` has not finished yet.

Usage from main.py:
    from metrics_collector import collect_embedding_metrics
    collect_embedding_metrics(db, store, products, model_tag=..., dry_run=...)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from config.settings import METRICS_TABLE
from stores.embedding_store import EmbeddingStore
from stores.product_repository import ProductRepository

logger = logging.getLogger("metrics")


def collect_embedding_metrics(
    db: Any,
    store: EmbeddingStore,
    products: ProductRepository,
    *,
    model_tag: str,
    run_id: str | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Compute and upsert today's coverage metrics.

    Returns the metrics dict regardless of whether the DB write succeeds.
    """
    product_ids = products.list_ids()
    embedded_ids = set(store.list_product_ids())
    by_model = store.count_by_model()

    total_products = len(product_ids)
    embedded = sum(1 for pid in product_ids if pid in embedded_ids)
    current = by_model.get(model_tag, 0)
    stale = sum(count for tag, count in by_model.items() if tag != model_tag)

    coverage_pct = round(embedded / total_products * 100, 1) if total_products > 0 else 0

    metrics: dict[str, Any] = {
        "run_date": date.today().isoformat(),
        "embedding_model": model_tag,
        "total_products": total_products,
        "embedded_count": embedded,
        "missing_count": total_products - embedded,
        "current_model_count": current,
        "stale_count": stale,
        "orphan_count": len(embedded_ids - set(product_ids)),
        "coverage_pct": coverage_pct,
        "model_counts": by_model,
    }

    if run_id and run_id != "dry-run":
        metrics["embedding_run_id"] = run_id

    logger.info(
        "Embedding metrics: %d/%d products embedded (%.1f%%) | missing=%d | "
        "stale=%d | orphans=%d | model=%s",
        embedded, total_products, coverage_pct,
        metrics["missing_count"], stale, metrics["orphan_count"], model_tag,
    )

    if stale > 0:
        logger.warning(
            "%d embeddings were made with another model, run regenerate --all",
            stale,
        )

    if dry_run:
        logger.info("[DRY RUN] Would upsert %s row for %s", METRICS_TABLE, metrics["run_date"])
        return metrics

    try:
        db.table(METRICS_TABLE).upsert(
            metrics,
            on_conflict="run_date,embedding_model",
        ).execute()
        logger.info("Embedding metrics saved for %s [%s]", metrics["run_date"], model_tag)
    except Exception as e:
        # Non-fatal: the metrics table is optional
        logger.warning("Failed to save embedding metrics: %s", e)

    return metrics
