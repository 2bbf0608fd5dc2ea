"""
Bulk job tracking: one ``embedding_runs`` row per backfill/regenerate.

Tracking is best-effort: a missing table or a failed write is logged
and never stops the embedding job itself.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from config.settings import RUNS_TABLE

logger = logging.getLogger("runs")

DRY_RUN_ID = "dry-run"


def run_status(total: int, succeeded: int) -> str:
    if succeeded == total:
        return "completed"
    if succeeded > 0:
        return "completed_with_errors"
    return "failed"


def create_run(
    db: Any,
    *,
    mode: str,
    model: str,
    dry_run: bool = False,
) -> str | None:
    """Insert a ``running`` row and return its id (None if the write failed)."""
    if dry_run:
        logger.info("[DRY RUN] Would create %s entry (mode=%s)", RUNS_TABLE, mode)
        return DRY_RUN_ID
    payload: dict[str, Any] = {
        "status": "running",
        "mode": mode,
        "embedding_model": model,
    }
    try:
        row = db.table(RUNS_TABLE).insert(payload).execute()
        run_id: str = row.data[0]["id"]
    except Exception as e:
        logger.warning("Failed to create embedding run row: %s", e)
        return None
    logger.info("Embedding run started: %s (mode=%s, model=%s)", run_id, mode, model)
    return run_id


def complete_run(
    db: Any,
    run_id: str | None,
    *,
    total: int,
    succeeded: int,
    runtime_seconds: int,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Close out a run.  Returns the update payload (handy for logs/tests)."""
    update = {
        "status": run_status(total, succeeded),
        "completed_at": datetime.now(timezone.utc).isoformat(),
        "total_items": total,
        "succeeded": succeeded,
        "failed": total - succeeded,
        "runtime_seconds": runtime_seconds,
    }
    if dry_run or run_id in (None, DRY_RUN_ID):
        logger.info(
            "[DRY RUN] Would update run, status=%s, %d/%d embedded",
            update["status"], succeeded, total,
        )
        return update
    try:
        db.table(RUNS_TABLE).update(update).eq("id", run_id).execute()
        logger.info("Run %s finished with status=%s", run_id, update["status"])
    except Exception as e:
        logger.warning("Failed to update embedding run %s: %s", run_id, e)
    return update
