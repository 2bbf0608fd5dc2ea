"""
Gemini embeddings client: one text in, one fixed-length vector out.

Each ``embed()`` call walks a small bounded retry machine:

    ATTEMPTING ──ok──────────────▶ SUCCEEDED
        │  429 / 5xx / 4xx / timeout / network
        ▼
     BACKOFF (2**attempt s, +≤1s jitter on 429) ──▶ ATTEMPTING
        │  attempt budget spent
        ▼
     EXHAUSTED

The client never raises past ``embed()``: a missing API key, an
exhausted retry budget, or a malformed response all come back as
``None`` so bulk callers skip the item instead of aborting the batch.

Usage:
    async with EmbeddingClient() as client:
        vector = await client.embed("Blue Dream 3.5g")
        query = await client.embed("fruity sativa", is_query=True)
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import Any, Awaitable, Callable

import httpx
import numpy as np

from config.settings import (
    EMBEDDING_API_BASE, EMBEDDING_DIMENSIONS, EMBEDDING_MODEL,
    GOOGLE_API_KEY, MAX_RETRIES, REQUEST_TIMEOUT_SEC,
)

logger = logging.getLogger("embeddings")

TASK_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_QUERY = "RETRIEVAL_QUERY"


class RetryState(enum.Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"
    SUCCEEDED = "succeeded"


class _Attempt(enum.Enum):
    """Outcome of a single HTTP round-trip."""

    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    BAD_RESPONSE = "bad_response"


class EmbeddingClient:
    """Async client for the Gemini ``embedContent`` endpoint.

    Owns its ``httpx.AsyncClient`` unless one is passed in (tests pass
    a client backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        api_base: str = EMBEDDING_API_BASE,
        max_retries: int = MAX_RETRIES,
        timeout_sec: float = REQUEST_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.api_key = GOOGLE_API_KEY if api_key is None else api_key
        self.model = model
        self.dimensions = dimensions
        self.api_base = api_base.rstrip("/")
        self.max_retries = max_retries
        self.timeout_sec = timeout_sec

        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep
        self._jitter = jitter

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "EmbeddingClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_sec)
        return self._http

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:embedContent"

    def build_request(self, text: str, *, is_query: bool = False) -> dict[str, Any]:
        """Request body; query mode and document mode differ only in taskType."""
        return {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": TASK_QUERY if is_query else TASK_DOCUMENT,
            "outputDimensionality": self.dimensions,
        }

    def backoff_delay(self, attempt: int, *, rate_limited: bool) -> float:
        """Seconds to wait after failed *attempt* (0-based)."""
        delay = float(2 ** attempt)
        if rate_limited:
            delay += self._jitter()
        return delay

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str, *, is_query: bool = False) -> np.ndarray | None:
        """Return the embedding for *text*, or ``None`` if unavailable."""
        if not self.api_key:
            logger.error("GOOGLE_API_KEY is not set, embedding unavailable")
            return None
        if not text or not text.strip():
            logger.warning("Refusing to embed empty text")
            return None

        payload = self.build_request(text, is_query=is_query)
        total_attempts = self.max_retries + 1

        state = RetryState.ATTEMPTING
        attempt = 0
        delay = 0.0
        vector: np.ndarray | None = None
        outcome = _Attempt.TRANSIENT

        while True:
            if state is RetryState.ATTEMPTING:
                outcome, vector = await self._attempt(payload, attempt, total_attempts)
                if outcome is _Attempt.OK:
                    state = RetryState.SUCCEEDED
                elif outcome is _Attempt.BAD_RESPONSE:
                    return None
                elif attempt >= self.max_retries:
                    state = RetryState.EXHAUSTED
                else:
                    delay = self.backoff_delay(
                        attempt, rate_limited=outcome is _Attempt.RATE_LIMITED,
                    )
                    state = RetryState.BACKOFF

            elif state is RetryState.BACKOFF:
                reason = "Rate limited (429)" if outcome is _Attempt.RATE_LIMITED else "API error"
                logger.warning(
                    "%s on attempt %d/%d. Retrying in %.1fs",
                    reason, attempt + 1, total_attempts, delay,
                )
                await self._sleep(delay)
                attempt += 1
                state = RetryState.ATTEMPTING

            elif state is RetryState.EXHAUSTED:
                logger.error(
                    "Embedding request failed after %d attempts (%s)",
                    total_attempts, outcome.value,
                )
                return None

            else:
                return vector

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        payload: dict[str, Any],
        attempt: int,
        total_attempts: int,
    ) -> tuple[_Attempt, np.ndarray | None]:
        try:
            response = await self.http.post(
                self.url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.api_key,
                },
                timeout=self.timeout_sec,
            )
        except httpx.TimeoutException as exc:
            logger.warning(
                "Embedding request timed out (attempt %d/%d): %s",
                attempt + 1, total_attempts, exc,
            )
            return _Attempt.TRANSIENT, None
        except httpx.HTTPError as exc:
            logger.warning(
                "Embedding request failed (attempt %d/%d): %s",
                attempt + 1, total_attempts, exc,
            )
            return _Attempt.TRANSIENT, None

        if response.status_code == 429:
            return _Attempt.RATE_LIMITED, None

        if not response.is_success:
            logger.warning(
                "Gemini API error (%d): %s",
                response.status_code, response.text[:500],
            )
            return _Attempt.TRANSIENT, None

        vector = self._parse(response)
        if vector is None:
            return _Attempt.BAD_RESPONSE, None
        return _Attempt.OK, vector

    def _parse(self, response: httpx.Response) -> np.ndarray | None:
        try:
            values = response.json()["embedding"]["values"]
            vector = np.asarray(values, dtype=np.float32).reshape(-1)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Unexpected embedding response shape: %s", exc)
            return None

        if vector.size == 0:
            logger.error("Embedding response contained no values")
            return None
        if self.dimensions and vector.size != self.dimensions:
            logger.error(
                "Embedding has %d dimensions, expected %d (model=%s)",
                vector.size, self.dimensions, self.model,
            )
            return None
        return vector
