"""
Embedding pipeline configuration.

All values come from the environment (``.env`` is loaded here, on
first import).  Components take these as
defaults only; every class also accepts them as constructor arguments
so tests can build isolated instances.

Rate-limit defaults are tuned for the Gemini free tier: 5 calls per
rolling minute, 3 products per sub-batch, 13s between sub-batches
(3 calls / 13s stays under 5 calls / 60s even before the per-call gate).
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")

PRODUCTS_TABLE = "products"
DISPENSARIES_TABLE = "dispensaries"
EMBEDDINGS_TABLE = "product_embeddings"
RUNS_TABLE = "embedding_runs"
METRICS_TABLE = "embedding_metrics"

# PostgREST caps a single select at 1000 rows by default.
PAGE_SIZE = 1000
# Max ids per .in_() filter (URL length).
IN_FILTER_CHUNK = 50

# ---------------------------------------------------------------------------
# Embedding provider (Gemini embedContent)
# ---------------------------------------------------------------------------

GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "gemini-embedding-exp-03-07")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "3072"))
EMBEDDING_API_BASE = os.getenv(
    "EMBEDDING_API_BASE",
    "https://generativelanguage.googleapis.com/v1beta",
)
REQUEST_TIMEOUT_SEC = float(os.getenv("EMBED_REQUEST_TIMEOUT_SEC", "30"))
MAX_RETRIES = int(os.getenv("EMBED_MAX_RETRIES", "3"))

# ---------------------------------------------------------------------------
# Bulk (re)generation throttling
# ---------------------------------------------------------------------------

MAX_CALLS_PER_MINUTE = int(os.getenv("EMBED_MAX_CALLS_PER_MINUTE", "5"))
BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "3"))
BATCH_DELAY_SEC = float(os.getenv("EMBED_BATCH_DELAY_SEC", "13"))
BACKFILL_LIMIT = int(os.getenv("EMBED_BACKFILL_LIMIT", "50"))
PROGRESS_EVERY = int(os.getenv("EMBED_PROGRESS_EVERY", "20"))

# ---------------------------------------------------------------------------
# Similarity search
# ---------------------------------------------------------------------------

SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))
SIMILARITY_LIMIT = int(os.getenv("SIMILARITY_LIMIT", "5"))

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"
