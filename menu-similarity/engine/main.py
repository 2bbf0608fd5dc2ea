"""
Menu similarity CLI: embedding jobs and similarity search.

Wires the Supabase client, Gemini embedding client, rate limiter,
stores, similarity engine and bulk orchestrator, then runs one command.
Bulk jobs are tracked in embedding_runs and followed by a coverage
snapshot in embedding_metrics.

Usage:
    python main.py backfill                      # up to EMBED_BACKFILL_LIMIT missing products
    python main.py backfill --all                # every product missing an embedding
    python main.py regenerate --all              # re-embed everything after a model change
    python main.py embed <product_id>            # one product
    python main.py similar "blue dream"          # semantic text search
    python main.py similar-product <product_id> --cross-dispensary
    python main.py prune                         # drop embeddings of deleted products
    python main.py status                        # coverage metrics

Environment variables:
    SUPABASE_URL / SUPABASE_SERVICE_KEY   required
    GOOGLE_API_KEY                        required for embedding commands
    DRY_RUN=true                          embed but skip all DB writes
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Sequence

from supabase import create_client

from config.settings import (
    BACKFILL_LIMIT, DRY_RUN, SUPABASE_KEY, SUPABASE_URL,
)
from embedding_client import EmbeddingClient
from metrics_collector import collect_embedding_metrics
from rate_limiter import RateLimiter
from regeneration import EmbeddingOrchestrator
from run_tracker import complete_run, create_run
from similarity_engine import EmbeddingModelMismatchError, SimilarityEngine, SimilarityResult
from stores import SupabaseEmbeddingStore, SupabaseProductRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("cli")


@dataclass
class Services:
    db: Any
    client: EmbeddingClient
    store: SupabaseEmbeddingStore
    products: SupabaseProductRepository
    engine: SimilarityEngine
    orchestrator: EmbeddingOrchestrator
    dry_run: bool = False


def connect() -> Any:
    """Create the Supabase client or exit if credentials are missing."""
    if not SUPABASE_URL or not SUPABASE_KEY:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        sys.exit(1)
    return create_client(SUPABASE_URL, SUPABASE_KEY)


def build_services(
    db: Any,
    *,
    client: EmbeddingClient | None = None,
    rate_limiter: RateLimiter | None = None,
    dry_run: bool = DRY_RUN,
) -> Services:
    client = client or EmbeddingClient()
    store = SupabaseEmbeddingStore(db)
    products = SupabaseProductRepository(db, embeddings=store)
    engine = SimilarityEngine(store, products, client)
    orchestrator = EmbeddingOrchestrator(
        client, store, products, rate_limiter or RateLimiter(), dry_run=dry_run,
    )
    return Services(db, client, store, products, engine, orchestrator, dry_run)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_bulk(services: Services, mode: str, limit: int, process_all: bool) -> int:
    orchestrator = services.orchestrator
    run_id = create_run(
        services.db, mode=mode, model=orchestrator.model_tag, dry_run=services.dry_run,
    )
    start = time.time()

    if mode == "regenerate":
        succeeded = await orchestrator.regenerate_all(limit, process_all)
    else:
        succeeded = await orchestrator.backfill_missing(limit, process_all)

    complete_run(
        services.db,
        run_id,
        total=orchestrator.last_total,
        succeeded=succeeded,
        runtime_seconds=int(time.time() - start),
        dry_run=services.dry_run,
    )
    collect_embedding_metrics(
        services.db,
        services.store,
        services.products,
        model_tag=orchestrator.model_tag,
        run_id=run_id,
        dry_run=services.dry_run,
    )
    print(f"Embedded {succeeded}/{orchestrator.last_total} products ({mode})")
    return 0


def _print_results(results: Sequence[SimilarityResult]) -> None:
    if not results:
        print("No similar products found.")
        return
    print(f"Found {len(results)} similar products:")
    print("-" * 50)
    for i, r in enumerate(results, 1):
        p = r.product
        size = f" {p.weight}" if p.weight else ""
        print(f"{i}. [{r.score:.3f}] {p.name}{size}")
        print(f"   Price: {p.price or 'N/A'}")
        print(f"   Dispensary: {p.dispensary_name or p.dispensary_id or '?'}")
    print("-" * 50)


async def run(args: argparse.Namespace, services: Services) -> int:
    """Execute one parsed command.  Returns the process exit code."""
    command = args.command

    if command in ("backfill", "regenerate"):
        return await _run_bulk(services, command, args.limit, args.all)

    if command == "embed":
        ok = await services.orchestrator.generate_embedding_for_product(args.product_id)
        print(f"Embedding for {args.product_id}: {'stored' if ok else 'FAILED'}")
        return 0 if ok else 1

    if command == "similar":
        try:
            results = await services.engine.find_similar_by_text(
                args.text, limit=args.limit, threshold=args.threshold,
            )
        except EmbeddingModelMismatchError as e:
            logger.error("Search aborted: %s", e)
            return 1
        _print_results(results)
        return 0

    if command == "similar-product":
        try:
            results = services.engine.find_similar_by_product(
                args.product_id,
                limit=args.limit,
                threshold=args.threshold,
                cross_dispensary=args.cross_dispensary,
                exclude_dispensary_id=args.exclude_dispensary,
            )
        except EmbeddingModelMismatchError as e:
            logger.error("Search aborted: %s", e)
            return 1
        _print_results(results)
        return 0

    if command == "prune":
        removed = services.orchestrator.prune_orphans()
        print(f"Removed {removed} orphaned embeddings")
        return 0

    if command == "status":
        metrics = collect_embedding_metrics(
            services.db,
            services.store,
            services.products,
            model_tag=services.client.model,
            dry_run=services.dry_run,
        )
        for key in ("total_products", "embedded_count", "missing_count",
                    "stale_count", "orphan_count", "coverage_pct"):
            print(f"  {key:<16s} {metrics[key]}")
        return 0

    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Product embeddings and similarity search over scraped dispensary menus",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("backfill", "Embed products that have no embedding yet"),
        ("regenerate", "Re-embed every product (after changing EMBEDDING_MODEL)"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--limit", type=int, default=BACKFILL_LIMIT,
                       help=f"Max products this run (default {BACKFILL_LIMIT})")
        p.add_argument("--all", action="store_true", help="Ignore --limit and process everything")

    p = sub.add_parser("embed", help="Embed a single product")
    p.add_argument("product_id")

    p = sub.add_parser("similar", help="Find products similar to a text query")
    p.add_argument("text")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--threshold", type=float, default=None)

    p = sub.add_parser("similar-product", help="Find products similar to an existing product")
    p.add_argument("product_id")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--threshold", type=float, default=None)
    p.add_argument("--cross-dispensary", action="store_true",
                   help="Spread results across dispensaries")
    p.add_argument("--exclude-dispensary", default=None, metavar="DISPENSARY_ID")

    sub.add_parser("prune", help="Delete embeddings whose product no longer exists")
    sub.add_parser("status", help="Report embedding coverage")

    return parser


async def _main_async(args: argparse.Namespace) -> int:
    services = build_services(connect())
    if services.dry_run:
        logger.info("DRY_RUN enabled, no DB writes")
    try:
        return await run(args, services)
    finally:
        await services.client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_main_async(args))


if __name__ == "__main__":
    sys.exit(main())
