"""Tests for the CLI parser and command dispatch (no network, FakeSupabase)."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import TARGET, FakeEmbeddingClient, vector_with_score
from main import build_parser, build_services, run
from rate_limiter import RateLimiter


@pytest.fixture
def services(db, clock):
    client = FakeEmbeddingClient({"Blue Dream 3.5g": TARGET, "blue dream": TARGET})
    limiter = RateLimiter(100, 10, 0, clock=clock, sleep=clock.sleep)
    return build_services(db, client=client, rate_limiter=limiter, dry_run=False)


class TestParser:

    def test_backfill_defaults(self):
        args = build_parser().parse_args(["backfill"])
        assert args.command == "backfill"
        assert args.all is False
        assert args.limit > 0

    def test_similar_product_flags(self):
        args = build_parser().parse_args([
            "similar-product", "p1", "--limit", "3", "--cross-dispensary",
            "--exclude-dispensary", "reef",
        ])
        assert args.product_id == "p1"
        assert args.limit == 3
        assert args.cross_dispensary is True
        assert args.exclude_dispensary == "reef"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRun:

    @pytest.mark.asyncio
    async def test_backfill_tracks_run_and_metrics(self, db, services, add_product, capsys):
        add_product("p1")
        args = build_parser().parse_args(["backfill", "--all"])

        assert await run(args, services) == 0

        assert "Embedded 1/1 products (backfill)" in capsys.readouterr().out
        assert len(db.rows("product_embeddings")) == 1
        assert db.rows("embedding_runs")[0]["status"] == "completed"
        assert db.rows("embedding_metrics")[0]["coverage_pct"] == 100.0

    @pytest.mark.asyncio
    async def test_embed_single_product(self, services, add_product):
        add_product("p1")
        assert await run(build_parser().parse_args(["embed", "p1"]), services) == 0
        assert await run(build_parser().parse_args(["embed", "missing"]), services) == 1

    @pytest.mark.asyncio
    async def test_similar_prints_results(self, services, add_product, add_dispensary, capsys):
        add_dispensary("planet13", "Planet 13")
        add_product("p1", name="Blue Dream")
        services.store.upsert("p1", vector_with_score(0.9), "test-model")

        assert await run(build_parser().parse_args(["similar", "blue dream"]), services) == 0

        out = capsys.readouterr().out
        assert "Found 1 similar products" in out
        assert "Blue Dream 3.5g" in out
        assert "Planet 13" in out

    @pytest.mark.asyncio
    async def test_similar_product_no_embedding(self, services, add_product, capsys):
        add_product("p1")
        args = build_parser().parse_args(["similar-product", "p1"])
        assert await run(args, services) == 0
        assert "No similar products found." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_prune(self, services, capsys):
        services.store.upsert("ghost", np.ones(2), "test-model")
        assert await run(build_parser().parse_args(["prune"]), services) == 0
        assert "Removed 1 orphaned embeddings" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_status(self, services, add_product, capsys):
        add_product("p1")
        add_product("p2")
        services.store.upsert("p1", np.ones(2), "test-model")
        assert await run(build_parser().parse_args(["status"]), services) == 0
        out = capsys.readouterr().out
        assert "coverage_pct" in out
        assert "50.0" in out


class TestMixedModels:

    @pytest.mark.asyncio
    async def test_partial_regenerate_then_search_exits_cleanly(self, db, clock, add_product, caplog):
        add_product("a", name="Alpha", weight_value=None)
        add_product("b", name="Bravo", weight_value=None)
        client = FakeEmbeddingClient({"Alpha": TARGET, "alpha": TARGET}, model="new-model")
        limiter = RateLimiter(100, 10, 0, clock=clock, sleep=clock.sleep)
        services = build_services(db, client=client, rate_limiter=limiter, dry_run=False)
        services.store.upsert("a", np.array([0.0, 1.0]), "old-model")
        services.store.upsert("b", np.array([0.0, 1.0]), "old-model")

        parser = build_parser()
        assert await run(parser.parse_args(["regenerate", "--limit", "1"]), services) == 0
        assert services.store.count_by_model() == {"new-model": 1, "old-model": 1}

        assert await run(parser.parse_args(["similar", "alpha"]), services) == 1
        assert await run(parser.parse_args(["similar-product", "a"]), services) == 1
        assert "old-model" in caplog.text
