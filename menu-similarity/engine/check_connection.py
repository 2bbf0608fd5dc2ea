"""
Validate credentials and table access before an embedding run.

Checks:
  1. Can connect to Supabase with the provided credentials
  2. Can read dispensaries, products and product_embeddings
  3. Can embed a short query with the configured model/dimensions

Exit code 0 = all good, 1 = something is broken.
"""

import asyncio
import sys

from config.settings import (
    DISPENSARIES_TABLE, EMBEDDING_DIMENSIONS, EMBEDDING_MODEL, EMBEDDINGS_TABLE,
    GOOGLE_API_KEY, PRODUCTS_TABLE, SUPABASE_KEY, SUPABASE_URL,
)
from embedding_client import EmbeddingClient


def log(icon: str, msg: str) -> None:
    print(f"{icon}  {msg}", flush=True)


if not SUPABASE_URL or not SUPABASE_KEY:
    log("X", "Missing SUPABASE_URL or SUPABASE_SERVICE_KEY")
    sys.exit(1)

try:
    from supabase import create_client

    supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
    log("OK", f"Client created for {SUPABASE_URL[:40]}...")
except Exception as e:
    log("X", f"Failed to create Supabase client: {e}")
    sys.exit(1)

# --- Reads ---
for table, key in (
    (DISPENSARIES_TABLE, "id"),
    (PRODUCTS_TABLE, "id"),
    (EMBEDDINGS_TABLE, "product_id"),
):
    try:
        result = supabase.table(table).select(key, count="exact").limit(1).execute()
        log("OK", f"Read {table}: {result.count or 0} total rows")
    except Exception as e:
        log("X", f"Failed to read {table}: {e}")
        sys.exit(1)

# --- Embedding API ---
if not GOOGLE_API_KEY:
    log("X", "Missing GOOGLE_API_KEY")
    sys.exit(1)


async def _probe() -> int:
    async with EmbeddingClient(max_retries=0) as client:
        vector = await client.embed("blue dream", is_query=True)
    return 0 if vector is None else len(vector)


dims = asyncio.run(_probe())
if not dims:
    log("X", f"Embedding request to {EMBEDDING_MODEL} failed")
    sys.exit(1)
log("OK", f"Embedding API ok, {EMBEDDING_MODEL} returned {dims} dimensions "
          f"(configured {EMBEDDING_DIMENSIONS})")

print()
log("OK", "All connection checks passed. Ready to embed.")
