"""Embedding capability — one interface, two variants.

* :class:`LocalEmbedder` — deterministic feature-hashing projection that runs
  in process and never fails.  Used for offline / development builds.
* :class:`RemoteEmbedder` — OpenAI-compatible ``/embeddings`` endpoint with
  per-call timeouts and exponential-backoff retries on transient failures.

The variant is chosen once per run by :func:`build_embedder`.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np
import requests

from docpack.config import LOCAL_MODEL, Settings
from docpack.errors import FatalEmbeddingError, TransientEmbeddingError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 409, 425, 429})


class Embedder(ABC):
    """Turn ordered texts into ordered, fixed-length vectors.

    Attributes
    ----------
    model_id:
        Identifier recorded next to every vector.  Vectors from different
        model ids are never compared.
    batch_size:
        Maximum number of texts per :meth:`embed` call.
    concurrency:
        Maximum number of :meth:`embed` calls in flight at once.
    """

    model_id: str
    batch_size: int = 64
    concurrency: int = 1

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per text, same length and order as *texts*."""
        ...

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]


class LocalEmbedder(Embedder):
    """Signed feature hashing of word unigrams and bigrams.

    Parameters
    ----------
    dimensions:
        Length of every vector.
    """

    _WORD_RE = re.compile(r"\w+")

    def __init__(self, dimensions: int = 256, *, model_id: str = LOCAL_MODEL, batch_size: int = 256) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions
        self.model_id = model_id
        self.batch_size = batch_size
        self.concurrency = 1

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._vector(text).tolist() for text in texts]

    def _vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dimensions, dtype=np.float64)
        words = [w.lower() for w in self._WORD_RE.findall(text)]
        features = words + [f"{a} {b}" for a, b in zip(words, words[1:])]
        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[bucket] += sign
        norm = np.linalg.norm(vec)
        return vec / norm if norm else vec


class RemoteEmbedder(Embedder):
    """Client for an OpenAI-compatible embeddings endpoint.

    Parameters
    ----------
    model_id:
        Remote model name, sent as ``model``.
    host:
        Base URL, e.g. ``https://api.openai.com/v1``.
    api_key:
        Bearer credential.
    batch_size / concurrency:
        Batching limits honoured by :func:`docpack.ingestion.dedup.embed_missing`.
    max_attempts:
        Total tries per call for transient failures.
    timeout:
        Seconds allowed per HTTP call; a timeout counts as transient.
    backoff:
        Base delay; attempt *n* waits ``backoff * 2 ** (n - 1)`` seconds.
    """

    def __init__(
        self,
        model_id: str,
        host: str,
        api_key: str,
        *,
        batch_size: int = 64,
        concurrency: int = 4,
        max_attempts: int = 5,
        timeout: float = 30.0,
        backoff: float = 1.0,
        session: requests.Session | None = None,
    ) -> None:
        self.model_id = model_id
        self.url = host.rstrip("/") + "/embeddings"
        self.api_key = api_key
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff = backoff
        self._session = session or requests.Session()

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        payload = self._post({"model": self.model_id, "input": list(texts)})
        return self._parse(payload, expected=len(texts))

    # -- internals ------------------------------------------------------------

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        last_reason = "no attempt made"
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = self._session.post(self.url, json=body, headers=headers, timeout=self.timeout)
            except requests.Timeout as exc:
                last_reason = f"timed out after {self.timeout}s ({exc})"
            except requests.ConnectionError as exc:
                last_reason = f"connection failed ({exc})"
            else:
                status = resp.status_code
                if status < 400:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise FatalEmbeddingError(f"embedding response is not JSON: {exc}") from exc
                if status >= 500 or status in RETRYABLE_STATUS:
                    last_reason = f"HTTP {status}"
                else:
                    raise FatalEmbeddingError(f"embedding request rejected: HTTP {status} {resp.text[:200]}")

            if attempt < self.max_attempts:
                wait = self.backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Embedding retry %d/%d for %s (wait %.1fs): %s",
                    attempt, self.max_attempts, self.model_id, wait, last_reason,
                )
                time.sleep(wait)

        raise TransientEmbeddingError(
            f"embedding failed after {self.max_attempts} attempts: {last_reason}"
        )

    @staticmethod
    def _parse(payload: dict[str, Any], expected: int) -> list[list[float]]:
        try:
            items = sorted(payload["data"], key=lambda item: item["index"])
            vectors = [list(map(float, item["embedding"])) for item in items]
        except (KeyError, TypeError, ValueError) as exc:
            raise FatalEmbeddingError(f"malformed embedding response: {exc!r}") from exc
        if len(vectors) != expected:
            raise FatalEmbeddingError(f"expected {expected} vectors, got {len(vectors)}")
        return vectors


def build_embedder(settings: Settings, model_id: str | None = None) -> Embedder:
    """Select the embedder variant for a run.

    ``local`` (the default) gives a :class:`LocalEmbedder`; any other model
    id is sent to the configured remote host.
    """
    model_id = model_id or settings.resolve_model()
    if model_id == LOCAL_MODEL:
        return LocalEmbedder()
    logger.info("Using remote embeddings: model=%s host=%s", model_id, settings.openai_host)
    return RemoteEmbedder(
        model_id,
        settings.openai_host,
        settings.openai_key,
        batch_size=settings.embed_batch_size,
        concurrency=settings.embed_concurrency,
        max_attempts=settings.embed_max_attempts,
        timeout=settings.embed_timeout,
        backoff=settings.embed_backoff,
    )
