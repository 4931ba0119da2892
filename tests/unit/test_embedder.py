"""Unit tests for the local and remote embedders."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests

from docpack.config import Settings
from docpack.errors import FatalEmbeddingError, TransientEmbeddingError
from docpack.ingestion.embedder import LocalEmbedder, RemoteEmbedder, build_embedder


def _response(status: int, payload: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload or {}
    resp.text = str(payload)
    return resp


def _payload(vectors: list[list[float]], reverse: bool = False) -> dict:
    items = [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    if reverse:
        items.reverse()
    return {"data": items}


@pytest.fixture()
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture()
def remote(session: MagicMock) -> RemoteEmbedder:
    return RemoteEmbedder(
        "text-embedding-3-small",
        "https://embeddings.example/v1/",
        "sk-test",
        max_attempts=3,
        timeout=2.0,
        backoff=0.5,
        session=session,
    )


class TestLocalEmbedder:
    def test_deterministic_and_normalized(self) -> None:
        embedder = LocalEmbedder(dimensions=64)
        first, again = embedder.embed(["retry with backoff"]), embedder.embed(["retry with backoff"])
        assert first == again
        assert len(first[0]) == 64
        assert np.linalg.norm(first[0]) == pytest.approx(1.0)

    def test_similar_texts_score_higher(self) -> None:
        embedder = LocalEmbedder()
        a, b, c = embedder.embed(
            ["deploy the service to staging", "deploy the service to production", "bake sourdough bread"]
        )
        assert np.dot(a, b) > np.dot(a, c)

    def test_empty_text_is_zero_vector(self) -> None:
        assert LocalEmbedder(dimensions=8).embed_query("") == [0.0] * 8

    def test_rejects_bad_dimensions(self) -> None:
        with pytest.raises(ValueError):
            LocalEmbedder(dimensions=0)


class TestRemoteEmbedder:
    def test_posts_batch_and_orders_by_index(self, remote: RemoteEmbedder, session: MagicMock) -> None:
        session.post.return_value = _response(200, _payload([[1.0, 0.0], [0.0, 1.0]], reverse=True))
        vectors = remote.embed(["a", "b"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        args, kwargs = session.post.call_args
        assert args[0] == "https://embeddings.example/v1/embeddings"
        assert kwargs["json"] == {"model": "text-embedding-3-small", "input": ["a", "b"]}
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["timeout"] == 2.0

    @patch("docpack.ingestion.embedder.time.sleep")
    def test_retries_rate_limit_then_succeeds(
        self, mock_sleep: MagicMock, remote: RemoteEmbedder, session: MagicMock
    ) -> None:
        session.post.side_effect = [
            _response(429),
            _response(503),
            _response(200, _payload([[0.5]])),
        ]
        assert remote.embed(["x"]) == [[0.5]]
        assert session.post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch("docpack.ingestion.embedder.time.sleep")
    def test_timeouts_exhaust_into_transient_error(
        self, mock_sleep: MagicMock, remote: RemoteEmbedder, session: MagicMock
    ) -> None:
        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(TransientEmbeddingError, match="after 3 attempts"):
            remote.embed(["x"])
        assert session.post.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("docpack.ingestion.embedder.time.sleep")
    def test_auth_failure_is_not_retried(
        self, mock_sleep: MagicMock, remote: RemoteEmbedder, session: MagicMock
    ) -> None:
        session.post.return_value = _response(401, {"error": "bad key"})
        with pytest.raises(FatalEmbeddingError):
            remote.embed(["x"])
        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    def test_count_mismatch_is_fatal(self, remote: RemoteEmbedder, session: MagicMock) -> None:
        session.post.return_value = _response(200, _payload([[1.0]]))
        with pytest.raises(FatalEmbeddingError, match="expected 2 vectors"):
            remote.embed(["a", "b"])

    def test_empty_input_makes_no_call(self, remote: RemoteEmbedder, session: MagicMock) -> None:
        assert remote.embed([]) == []
        session.post.assert_not_called()


class TestBuildEmbedder:
    def test_local_by_default(self) -> None:
        assert isinstance(build_embedder(Settings(embedding_model=None)), LocalEmbedder)

    def test_remote_carries_settings(self) -> None:
        settings = Settings(embedding_model="m1", embed_batch_size=16, embed_concurrency=2)
        embedder = build_embedder(settings)
        assert isinstance(embedder, RemoteEmbedder)
        assert embedder.model_id == "m1"
        assert (embedder.batch_size, embedder.concurrency) == (16, 2)
