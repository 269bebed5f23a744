"""Pipeline worker — process one ingestion task end-to-end.

Stages run strictly in order on the calling thread::

    received → retrieving → parsing → persisting → vectorizing → completed
                   └────────────┴──────────┴────────────┴──────→ failed

The worker holds no state between tasks.  It owns the file stream for the
duration of one task and closes it on every exit path.  Failures are
logged, wrapped in the stage's :class:`~rag_ingest.errors.IngestionError`
subclass, and re-raised so the transport can redeliver or dead-letter the
job; nothing is swallowed and nothing is retried here.

Usage::

    from rag_ingest.ingestion.models import IngestionTask
    from rag_ingest.ingestion.worker import build_worker

    worker = build_worker()
    result = worker.process(IngestionTask.from_message(payload))
    print(result.summary())
"""

from __future__ import annotations

import functools
import logging
import time
from pathlib import Path
from collections.abc import Callable
from contextlib import ExitStack
from typing import TYPE_CHECKING, BinaryIO, Protocol

from rag_ingest.config import RetrievalConfig
from rag_ingest.errors import (
    IngestionError,
    ParseOrPersistFailed,
    RetrievalError,
    RetrievalFailed,
    VectorizeFailed,
)
from rag_ingest.ingestion.locks import HashLockRegistry
from rag_ingest.ingestion.models import IngestionTask, TaskResult, TaskState
from rag_ingest.ingestion.storage import make_replayable, open_reference

if TYPE_CHECKING:
    from rag_ingest.config import Settings

logger = logging.getLogger(__name__)


class ParseCapability(Protocol):
    def parse_and_save(
        self,
        content_hash: str,
        stream: BinaryIO,
        owner_id: str,
        org_scope: str | None,
        is_public: bool,
    ) -> int | None: ...


class VectorizeCapability(Protocol):
    def vectorize(
        self,
        content_hash: str,
        owner_id: str,
        org_scope: str | None,
        is_public: bool,
    ) -> int | None: ...


StateListener = Callable[[IngestionTask, TaskState], None]


class PipelineWorker:
    """Orchestrate retrieve → parse/persist → vectorize for a single task.

    Parameters
    ----------
    parser:
        Parse-and-save capability; persists text units keyed by content hash.
    vectorizer:
        Vectorize capability; embeds stored units and writes the index.
    retrieval_config:
        Timeouts, user agent, and spool size for the default opener.
    opener:
        Callable resolving a storage reference to a stream.  Defaults to
        :func:`~rag_ingest.ingestion.storage.open_reference`.
    locks:
        Per-hash lock registry, shared between workers of one process.
    on_state:
        Optional callback invoked on every state transition.  Exceptions it
        raises are logged and otherwise ignored.
    """

    def __init__(
        self,
        parser: ParseCapability,
        vectorizer: VectorizeCapability,
        *,
        retrieval_config: RetrievalConfig | None = None,
        opener: Callable[[str], BinaryIO | None] | None = None,
        locks: HashLockRegistry | None = None,
        on_state: StateListener | None = None,
    ) -> None:
        self.parser = parser
        self.vectorizer = vectorizer
        self.retrieval_config = retrieval_config or RetrievalConfig()
        self._open = opener or functools.partial(open_reference, config=self.retrieval_config)
        self.locks = locks or HashLockRegistry()
        self._on_state = on_state

    # -- public API -----------------------------------------------------------

    def process(self, task: IngestionTask) -> TaskResult:
        """Run every stage for *task*.

        Raises
        ------
        RetrievalError
            The file could not be retrieved; later stages were skipped.
        ParseOrPersistFailed
            The parse/persist collaborator raised.
        VectorizeFailed
            The vectorize collaborator (embedding or index) raised.
        """
        t0 = time.monotonic()
        state = TaskState.RECEIVED
        self._transition(task, state)
        logger.info(
            "Received task %s (owner=%s, org_scope=%s, public=%s)",
            task.content_hash, task.owner_id, task.org_scope, task.is_public,
        )

        try:
            with ExitStack() as stack:
                state = TaskState.RETRIEVING
                self._transition(task, state)
                stream = self._retrieve(task, stack)

                with self.locks.hold(task.content_hash):
                    state = TaskState.PARSING
                    self._transition(task, state)
                    try:
                        units = self.parser.parse_and_save(
                            task.content_hash, stream, task.owner_id, task.org_scope, task.is_public
                        )
                    except Exception as exc:
                        raise ParseOrPersistFailed(
                            f"Parsing failed for {task.content_hash}: {exc}",
                            content_hash=task.content_hash,
                        ) from exc
                    state = TaskState.PERSISTING
                    self._transition(task, state)
                    logger.info("File parsed and persisted, content_hash=%s", task.content_hash)

                    state = TaskState.VECTORIZING
                    self._transition(task, state)
                    try:
                        vectors = self.vectorizer.vectorize(
                            task.content_hash, task.owner_id, task.org_scope, task.is_public
                        )
                    except Exception as exc:
                        raise VectorizeFailed(
                            f"Vectorization failed for {task.content_hash}: {exc}",
                            content_hash=task.content_hash,
                        ) from exc
        except IngestionError as exc:
            logger.error("Error processing task %s during %s: %s",
                         task.content_hash, state.value, exc, exc_info=True)
            self._transition(task, TaskState.FAILED)
            raise

        self._transition(task, TaskState.COMPLETED)
        result = TaskResult(
            content_hash=task.content_hash,
            text_units=units or 0,
            vectors=vectors or 0,
            elapsed_seconds=round(time.monotonic() - t0, 3),
        )
        logger.info("%s", result.summary())
        return result

    # -- internals ------------------------------------------------------------

    def _retrieve(self, task: IngestionTask, stack: ExitStack) -> BinaryIO:
        try:
            raw = self._open(task.storage_reference)
            if raw is not None:
                stack.callback(self._close, raw, task)
            stream = make_replayable(raw, self.retrieval_config.spool_max_bytes)
            if stream is not raw:
                stack.callback(self._close, stream, task)
        except RetrievalError as exc:
            exc.content_hash = task.content_hash
            raise
        except Exception as exc:
            raise RetrievalFailed(
                f"Retrieval failed for {task.storage_reference}: {exc}",
                content_hash=task.content_hash,
            ) from exc
        return stream

    @staticmethod
    def _close(stream: BinaryIO, task: IngestionTask) -> None:
        try:
            stream.close()
        except OSError:
            logger.error("Error closing file stream for %s", task.content_hash, exc_info=True)

    def _transition(self, task: IngestionTask, state: TaskState) -> None:
        logger.debug("Task %s -> %s", task.content_hash, state.value)
        if self._on_state is None:
            return
        try:
            self._on_state(task, state)
        except Exception:
            logger.warning(
                "State listener failed for %s -> %s", task.content_hash, state.value, exc_info=True
            )


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------


def build_worker(config: Settings | None = None, *, locks: HashLockRegistry | None = None) -> PipelineWorker:
    """Assemble a :class:`PipelineWorker` with the default collaborators.

    JSON-Lines text unit store, remote embedding client, Chroma index.  The
    hash locks live next to the text units, so workers that share the store
    volume also share the locks.
    """
    from rag_ingest.config import settings as default_settings
    from rag_ingest.index.chroma_store import ChromaVectorIndex
    from rag_ingest.ingestion.embedding import EmbeddingClient
    from rag_ingest.ingestion.parser import ParseService
    from rag_ingest.ingestion.text_store import JsonlTextUnitStore
    from rag_ingest.ingestion.vectorizer import VectorizationService

    cfg = config or default_settings
    store = JsonlTextUnitStore(cfg.text_unit_dir)
    if locks is None:
        locks = HashLockRegistry(cfg.lock_dir or Path(cfg.text_unit_dir) / ".locks")
    parser = ParseService(store, chunk_size=cfg.chunk_size, chunk_overlap=cfg.chunk_overlap)
    index = ChromaVectorIndex(cfg.chroma_collection, host=cfg.chroma_host, port=cfg.chroma_port)
    vectorizer = VectorizationService(store, EmbeddingClient(cfg.embedding_config()), index)
    return PipelineWorker(parser, vectorizer, retrieval_config=cfg.retrieval_config(), locks=locks)
