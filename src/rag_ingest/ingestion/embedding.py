"""Embedding batch client for an OpenAI-compatible ``/embeddings`` endpoint.

Texts are sent in contiguous batches of at most ``batch_size``.  Each batch
is retried on transient errors (rate limiting, 5xx, connection drops) with
a fixed delay, and the whole batch, retries included, must finish within
``batch_timeout`` seconds.  Any batch that cannot be completed aborts the
entire call: callers get either one vector per input text, in input order,
or an :class:`~rag_ingest.errors.EmbeddingFailed`.

Usage::

    from rag_ingest.config import settings
    from rag_ingest.ingestion.embedding import EmbeddingClient

    client = EmbeddingClient(settings.embedding_config())
    vectors = client.embed(["first chunk", "second chunk"])
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

import requests
from langchain_core.embeddings import Embeddings

from rag_ingest.config import EmbeddingConfig
from rag_ingest.errors import EmbeddingFailed, MalformedResponse

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = frozenset({408, 409, 425, 429})


def _is_transient(exc: requests.RequestException) -> bool:
    """Rate limits, server errors, timeouts, and dropped connections are retryable."""
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        return status in _TRANSIENT_STATUS or status >= 500
    return False


class EmbeddingClient(Embeddings):
    """Turn text units into fixed-dimension vectors via a remote API.

    Parameters
    ----------
    config:
        Endpoint, model, dimension, batching, and retry/timeout policy.
    session:
        Optional :class:`requests.Session`; one is created when omitted.
    """

    def __init__(self, config: EmbeddingConfig, *, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._url = config.base_url.rstrip("/") + "/embeddings"

    # -- public API -----------------------------------------------------------

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per text, in the order given.

        An empty input returns ``[]`` without calling the API.

        Raises
        ------
        EmbeddingFailed
            A batch exhausted its retries, timed out, hit a non-transient
            error, or came back malformed.  No partial result is returned.
        """
        texts = list(texts)
        if not texts:
            return []

        batch_size = self.config.batch_size
        logger.info(
            "Embedding %d texts with model=%s, batch_size=%d",
            len(texts), self.config.model, batch_size,
        )

        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            logger.debug("Calling embedding API for batch %d-%d (size=%d)",
                         start, start + len(batch) - 1, len(batch))
            vectors.extend(self._embed_batch(batch))

        if len(vectors) != len(texts):
            raise EmbeddingFailed(
                f"Embedding count mismatch: got {len(vectors)} vectors for {len(texts)} texts"
            )
        logger.info("Generated %d vectors (dim=%d)", len(vectors), self.config.dimension)
        return vectors

    def close(self) -> None:
        self._session.close()

    # -- LangChain Embeddings -------------------------------------------------

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed(texts)

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]

    # -- internals ------------------------------------------------------------

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        cfg = self.config
        deadline = time.monotonic() + cfg.batch_timeout
        attempts = cfg.max_retries + 1
        last_exc: Exception | None = None
        timed_out = False

        for attempt in range(1, attempts + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            try:
                response = self._post_within(batch, remaining)
            except FutureTimeout as exc:
                last_exc = exc
                timed_out = True
                break
            except requests.RequestException as exc:
                last_exc = exc
                if not _is_transient(exc):
                    raise EmbeddingFailed(f"Embedding request rejected: {exc}", cause=exc) from exc
                if attempt == attempts:
                    break
                if deadline - time.monotonic() <= cfg.retry_delay:
                    timed_out = True
                    break
                logger.warning("Retry %d/%d for embedding batch (wait %.1fs): %s",
                               attempt, cfg.max_retries, cfg.retry_delay, exc)
                time.sleep(cfg.retry_delay)
                continue

            try:
                return self._parse_vectors(response, expected=len(batch))
            except MalformedResponse as exc:
                raise EmbeddingFailed(f"Malformed embedding response: {exc}", cause=exc) from exc

        if timed_out:
            message = f"Embedding batch exceeded {cfg.batch_timeout:.0f}s timeout"
        else:
            message = f"Embedding batch failed after {attempts} attempts"
        raise EmbeddingFailed(message, cause=last_exc) from last_exc

    def _post_within(self, batch: list[str], budget: float) -> requests.Response:
        """Run one request on a helper thread and stop waiting after *budget* seconds.

        ``requests`` timeouts bound each socket operation, not the whole
        exchange, so a server trickling its body could otherwise keep the
        batch alive indefinitely.  The abandoned request finishes in the
        background; its result is discarded.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="embedding-batch")
        try:
            future = executor.submit(self._post, batch, timeout=budget)
            return future.result(timeout=budget)
        finally:
            executor.shutdown(wait=False)

    def _post(self, batch: list[str], *, timeout: float) -> requests.Response:
        body = {
            "model": self.config.model,
            "input": batch,
            "dimension": self.config.dimension,
            "encoding_format": "float",
        }
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        response = self._session.post(self._url, json=body, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response

    def _parse_vectors(self, response: requests.Response, *, expected: int) -> list[list[float]]:
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"response is not JSON: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise MalformedResponse("'data' field is missing or not an array")

        if data and all(isinstance(item, dict) and "index" in item for item in data):
            data = sorted(data, key=lambda item: item["index"])

        vectors: list[list[float]] = []
        for position, item in enumerate(data):
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list):
                raise MalformedResponse(f"item {position} has no 'embedding' array")
            try:
                vector = [float(value) for value in embedding]
            except (TypeError, ValueError) as exc:
                raise MalformedResponse(f"item {position} has non-numeric values") from exc
            if len(vector) != self.config.dimension:
                raise MalformedResponse(
                    f"item {position} has dimension {len(vector)}, expected {self.config.dimension}"
                )
            vectors.append(vector)

        if len(vectors) != expected:
            raise MalformedResponse(f"got {len(vectors)} embeddings for {expected} inputs")
        return vectors
