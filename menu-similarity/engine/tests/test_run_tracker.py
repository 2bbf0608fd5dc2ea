"""Tests for embedding_runs tracking."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from run_tracker import DRY_RUN_ID, complete_run, create_run, run_status


@pytest.mark.parametrize("total, succeeded, expected", [
    (10, 10, "completed"),
    (10, 4, "completed_with_errors"),
    (10, 0, "failed"),
    (0, 0, "completed"),
])
def test_run_status(total, succeeded, expected):
    assert run_status(total, succeeded) == expected


def test_create_and_complete_run(db):
    run_id = create_run(db, mode="backfill", model="m1")
    assert run_id

    update = complete_run(db, run_id, total=5, succeeded=4, runtime_seconds=90)

    row = db.rows("embedding_runs")[0]
    assert row["id"] == run_id
    assert row["mode"] == "backfill"
    assert row["embedding_model"] == "m1"
    assert row["status"] == "completed_with_errors"
    assert row["failed"] == 1
    assert row["runtime_seconds"] == 90
    assert update["status"] == row["status"]


def test_dry_run_writes_nothing(db):
    run_id = create_run(db, mode="regenerate", model="m1", dry_run=True)
    assert run_id == DRY_RUN_ID
    complete_run(db, run_id, total=1, succeeded=1, runtime_seconds=1, dry_run=True)
    assert db.rows("embedding_runs") == []


def test_create_failure_returns_none():
    db = MagicMock()
    db.table.return_value.insert.return_value.execute.side_effect = RuntimeError("missing table")
    assert create_run(db, mode="backfill", model="m1") is None


def test_complete_without_run_id_skips_update():
    db = MagicMock()
    update = complete_run(db, None, total=2, succeeded=0, runtime_seconds=3)
    assert update["status"] == "failed"
    db.table.assert_not_called()


def test_complete_failure_is_swallowed():
    db = MagicMock()
    db.table.return_value.update.return_value.eq.return_value.execute.side_effect = RuntimeError("x")
    update = complete_run(db, "run-1", total=1, succeeded=1, runtime_seconds=1)
    assert update["status"] == "completed"
