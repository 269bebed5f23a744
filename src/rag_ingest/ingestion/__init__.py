"""
Ingestion — retrieve, parse, persist, and vectorize uploaded documents.

This module is responsible for the worker that turns one ingestion task
(a reference to a stored file) into text units keyed by the file's
content hash and into vectors in the configured index.

Public surface
--------------
- :class:`PipelineWorker` / :func:`build_worker` — per-task orchestration.
- :class:`EmbeddingClient` — batched remote embedding calls.
- :func:`open_reference` — file retrieval adapter.
- :class:`IngestionTask`, :class:`TextUnit`, :class:`TaskResult` — data models.
"""

from rag_ingest.ingestion.embedding import EmbeddingClient
from rag_ingest.ingestion.models import IngestionTask, TaskResult, TaskState, TextUnit
from rag_ingest.ingestion.storage import make_replayable, open_reference
from rag_ingest.ingestion.worker import PipelineWorker, build_worker

__all__ = [
    "EmbeddingClient",
    "IngestionTask",
    "PipelineWorker",
    "TaskResult",
    "TaskState",
    "TextUnit",
    "build_worker",
    "make_replayable",
    "open_reference",
]
