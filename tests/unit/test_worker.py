"""Unit tests for the pipeline worker."""

from __future__ import annotations

import io
import threading
import time
from pathlib import Path
from typing import BinaryIO

import pytest
from langchain_core.embeddings import Embeddings

from rag_ingest.errors import (
    AccessDenied,
    EmbeddingFailed,
    ParseOrPersistFailed,
    RetrievalFailed,
    VectorizeFailed,
)
from rag_ingest.index.memory_store import InMemoryVectorIndex
from rag_ingest.ingestion.locks import HashLockRegistry
from rag_ingest.ingestion.models import IngestionTask, TaskState
from rag_ingest.ingestion.parser import ParseService
from rag_ingest.ingestion.text_store import InMemoryTextUnitStore
from rag_ingest.ingestion.vectorizer import VectorizationService
from rag_ingest.ingestion.worker import PipelineWorker


# ── Fakes ───────────────────────────────────────────────────────────────


class TrackingStream(io.BytesIO):
    """BytesIO that counts close() calls."""

    def __init__(self, data: bytes = b"hello world", *, seekable: bool = True) -> None:
        super().__init__(data)
        self._seekable = seekable
        self.close_calls = 0

    def seekable(self) -> bool:
        return self._seekable

    def close(self) -> None:
        self.close_calls += 1
        super().close()


class FakeParser:
    def __init__(self, error: Exception | None = None, units: int = 3) -> None:
        self.error = error
        self.units = units
        self.calls: list[tuple] = []
        self.seen_bytes: bytes | None = None

    def parse_and_save(self, content_hash, stream, owner_id, org_scope, is_public):  # noqa: ANN001, ANN201
        self.calls.append((content_hash, owner_id, org_scope, is_public))
        self.seen_bytes = stream.read()
        if self.error:
            raise self.error
        return self.units


class FakeVectorizer:
    def __init__(self, error: Exception | None = None, vectors: int = 3) -> None:
        self.error = error
        self.vectors = vectors
        self.calls: list[tuple] = []

    def vectorize(self, content_hash, owner_id, org_scope, is_public):  # noqa: ANN001, ANN201
        self.calls.append((content_hash, owner_id, org_scope, is_public))
        if self.error:
            raise self.error
        return self.vectors


class FakeEmbeddings(Embeddings):
    def __init__(self) -> None:
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [[float(len(t)), 1.0, 0.0] for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]


TASK = IngestionTask(
    content_hash="5d41402abc4b2a76b9719d911017c592",
    storage_reference="https://bucket.example.com/doc.txt",
    owner_id="user-7",
    org_scope="finance",
    is_public=False,
)


def _make_worker(parser, vectorizer, stream: BinaryIO | None = None, **kwargs):  # noqa: ANN001, ANN201
    states: list[TaskState] = []
    worker = PipelineWorker(
        parser,
        vectorizer,
        opener=kwargs.pop("opener", lambda ref: stream),
        on_state=lambda task, state: states.append(state),
        **kwargs,
    )
    return worker, states


# ── Happy path ─────────────────────────────────────────────────────────


class TestProcess:
    def test_stages_run_in_order(self) -> None:
        stream = TrackingStream(b"some document text")
        parser, vectorizer = FakeParser(units=4), FakeVectorizer(vectors=4)
        worker, states = _make_worker(parser, vectorizer, stream)

        result = worker.process(TASK)

        assert states == [
            TaskState.RECEIVED,
            TaskState.RETRIEVING,
            TaskState.PARSING,
            TaskState.PERSISTING,
            TaskState.VECTORIZING,
            TaskState.COMPLETED,
        ]
        assert result.state is TaskState.COMPLETED
        assert result.text_units == 4
        assert result.vectors == 4
        assert parser.seen_bytes == b"some document text"
        assert parser.calls == [(TASK.content_hash, "user-7", "finance", False)]
        assert vectorizer.calls == [(TASK.content_hash, "user-7", "finance", False)]
        assert stream.close_calls == 1

    def test_non_seekable_stream_is_buffered_and_both_closed(self) -> None:
        raw = TrackingStream(b"streamed body", seekable=False)
        parser = FakeParser()
        worker, _ = _make_worker(parser, FakeVectorizer(), raw)

        worker.process(TASK)

        assert parser.seen_bytes == b"streamed body"
        assert raw.close_calls == 1

    def test_close_error_does_not_fail_task(self) -> None:
        class BadClose(TrackingStream):
            def close(self) -> None:
                super().close()
                raise OSError("already gone")

        stream = BadClose()
        worker, states = _make_worker(FakeParser(), FakeVectorizer(), stream)

        worker.process(TASK)
        assert states[-1] is TaskState.COMPLETED
        assert stream.close_calls == 1


# ── Failure paths ──────────────────────────────────────────────────────


class TestFailures:
    def test_parse_failure_closes_stream_once(self) -> None:
        stream = TrackingStream()
        boom = ValueError("unsupported encoding")
        parser, vectorizer = FakeParser(error=boom), FakeVectorizer()
        worker, states = _make_worker(parser, vectorizer, stream)

        with pytest.raises(ParseOrPersistFailed) as exc_info:
            worker.process(TASK)

        assert exc_info.value.__cause__ is boom
        assert exc_info.value.content_hash == TASK.content_hash
        assert stream.close_calls == 1
        assert vectorizer.calls == []
        assert states[-2:] == [TaskState.PARSING, TaskState.FAILED]

    def test_vectorize_failure_is_wrapped(self) -> None:
        stream = TrackingStream()
        cause = EmbeddingFailed("retries exhausted")
        worker, states = _make_worker(FakeParser(), FakeVectorizer(error=cause), stream)

        with pytest.raises(VectorizeFailed) as exc_info:
            worker.process(TASK)

        assert exc_info.value.__cause__ is cause
        assert stream.close_calls == 1
        assert states[-1] is TaskState.FAILED

    def test_access_denied_skips_later_stages(self) -> None:
        def opener(ref: str) -> BinaryIO:
            raise AccessDenied("expired link")

        parser, vectorizer = FakeParser(), FakeVectorizer()
        worker, states = _make_worker(parser, vectorizer, opener=opener)

        with pytest.raises(AccessDenied) as exc_info:
            worker.process(TASK)

        assert exc_info.value.content_hash == TASK.content_hash
        assert parser.calls == []
        assert vectorizer.calls == []
        assert states == [TaskState.RECEIVED, TaskState.RETRIEVING, TaskState.FAILED]

    def test_null_stream_is_retrieval_failure(self) -> None:
        parser = FakeParser()
        worker, _ = _make_worker(parser, FakeVectorizer(), None)

        with pytest.raises(RetrievalFailed):
            worker.process(TASK)
        assert parser.calls == []

    def test_empty_stream_is_retrieval_failure_and_closed(self) -> None:
        stream = TrackingStream(b"")
        worker, _ = _make_worker(FakeParser(), FakeVectorizer(), stream)

        with pytest.raises(RetrievalFailed, match="empty"):
            worker.process(TASK)
        assert stream.close_calls == 1

    def test_unexpected_opener_error_is_wrapped(self) -> None:
        def opener(ref: str) -> BinaryIO:
            raise PermissionError("denied by filesystem")

        worker, _ = _make_worker(FakeParser(), FakeVectorizer(), opener=opener)

        with pytest.raises(RetrievalFailed) as exc_info:
            worker.process(TASK)
        assert isinstance(exc_info.value.__cause__, PermissionError)

    def test_lock_released_after_failure(self) -> None:
        locks = HashLockRegistry()
        worker, _ = _make_worker(
            FakeParser(error=RuntimeError("x")), FakeVectorizer(), TrackingStream(), locks=locks
        )

        with pytest.raises(ParseOrPersistFailed):
            worker.process(TASK)
        assert len(locks) == 0

    def test_failing_listener_does_not_mask_stage_error(self) -> None:
        def listener(task: IngestionTask, state: TaskState) -> None:
            if state is TaskState.FAILED:
                raise RuntimeError("listener broke")

        stream = TrackingStream()
        worker = PipelineWorker(
            FakeParser(error=ValueError("bad bytes")),
            FakeVectorizer(),
            opener=lambda ref: stream,
            on_state=listener,
        )

        with pytest.raises(ParseOrPersistFailed):
            worker.process(TASK)
        assert stream.close_calls == 1

    def test_failing_listener_does_not_fail_task(self) -> None:
        def listener(task: IngestionTask, state: TaskState) -> None:
            raise RuntimeError("listener broke")

        worker = PipelineWorker(
            FakeParser(), FakeVectorizer(), opener=lambda ref: TrackingStream(), on_state=listener
        )

        assert worker.process(TASK).state is TaskState.COMPLETED


# ── End-to-end with real collaborators ─────────────────────────────────


class TestIdempotency:
    @staticmethod
    def _pipeline(tmp_path: Path):  # noqa: ANN205
        store = InMemoryTextUnitStore()
        index = InMemoryVectorIndex()
        embeddings = FakeEmbeddings()
        worker = PipelineWorker(
            ParseService(store, chunk_size=64, chunk_overlap=8),
            VectorizationService(store, embeddings, index),
        )
        return worker, store, index, embeddings

    def test_reprocessing_same_hash_does_not_duplicate(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.txt"
        doc.write_text("Paragraph one about ingestion.\n\n" * 20)
        task = TASK.model_copy(update={"storage_reference": str(doc)})
        worker, store, index, embeddings = self._pipeline(tmp_path)

        first = worker.process(task)
        units_after_first, records_after_first = len(store), len(index)
        second = worker.process(task)

        assert first.text_units == second.text_units > 1
        assert len(store) == units_after_first == first.text_units
        assert len(index) == records_after_first == first.vectors
        assert embeddings.calls == 2

    def test_shorter_reupload_prunes_stale_vectors(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.txt"
        doc.write_text("A sentence that repeats. " * 40)
        task = TASK.model_copy(update={"storage_reference": str(doc)})
        worker, store, index, _ = self._pipeline(tmp_path)

        worker.process(task)
        doc.write_text("Short now.")
        result = worker.process(task)

        assert result.text_units == 1
        assert index.count(task.content_hash) == 1
        assert [r["content"] for r in index.records(task.content_hash)] == ["Short now."]

    def test_index_metadata_carries_permissions(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.txt"
        doc.write_text("Quarterly numbers.")
        task = TASK.model_copy(update={"storage_reference": str(doc), "is_public": True})
        worker, _, index, _ = self._pipeline(tmp_path)

        worker.process(task)

        meta = index.records(task.content_hash)[0]["metadata"]
        assert meta == {
            "content_hash": task.content_hash,
            "chunk_index": 0,
            "owner_id": "user-7",
            "org_scope": "finance",
            "is_public": True,
        }


# ── Concurrency ────────────────────────────────────────────────────────


class TestConcurrency:
    def test_same_hash_is_serialised(self) -> None:
        active = 0
        peak = 0
        guard = threading.Lock()

        class SlowParser(FakeParser):
            def parse_and_save(self, *args):  # noqa: ANN002, ANN201
                nonlocal active, peak
                with guard:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.05)
                with guard:
                    active -= 1
                return 1

        worker = PipelineWorker(SlowParser(), FakeVectorizer(), opener=lambda ref: TrackingStream())
        threads = [threading.Thread(target=worker.process, args=(TASK,)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 1
        assert len(worker.locks) == 0


# ── Default wiring ─────────────────────────────────────────────────────


def test_build_worker_wires_defaults(tmp_path: Path) -> None:
    from unittest.mock import MagicMock, patch

    from rag_ingest.config import Settings
    from rag_ingest.ingestion.embedding import EmbeddingClient
    from rag_ingest.ingestion.text_store import JsonlTextUnitStore
    from rag_ingest.ingestion.worker import build_worker

    cfg = Settings(_env_file=None, text_unit_dir=str(tmp_path / "units"), embedding_batch_size=8)
    with patch.dict("sys.modules", {"chromadb": MagicMock()}):
        worker = build_worker(cfg)

    assert isinstance(worker.parser, ParseService)
    assert isinstance(worker.parser.store, JsonlTextUnitStore)
    assert isinstance(worker.vectorizer.embeddings, EmbeddingClient)
    assert worker.vectorizer.embeddings.config.batch_size == 8
    assert worker.vectorizer.store is worker.parser.store
    assert worker.retrieval_config.read_timeout == 180.0
