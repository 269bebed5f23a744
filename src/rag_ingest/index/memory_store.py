"""In-memory vector index for tests and local runs."""

from __future__ import annotations

import threading
from typing import Any

from rag_ingest.index.base import VectorIndexBase, unit_metadata
from rag_ingest.ingestion.models import TextUnit


class InMemoryVectorIndex(VectorIndexBase):
    """Dict-backed index keyed by ``<content_hash>_<chunk_index>``."""

    def __init__(self, collection_name: str = "memory") -> None:
        super().__init__(collection_name)
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(self, content_hash: str, units: list[TextUnit], vectors: list[list[float]]) -> int:
        self.check_alignment(content_hash, units, vectors)
        with self._lock:
            self._drop(content_hash)
            for unit, vector in zip(units, vectors):
                self._records[unit.unit_id] = {
                    "id": unit.unit_id,
                    "content": unit.text,
                    "embedding": list(vector),
                    "metadata": unit_metadata(unit),
                }
        return len(units)

    def count(self, content_hash: str) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if r["metadata"]["content_hash"] == content_hash)

    def delete(self, content_hash: str) -> None:
        with self._lock:
            self._drop(content_hash)

    def health_check(self) -> bool:
        return True

    def records(self, content_hash: str) -> list[dict[str, Any]]:
        """Stored records for *content_hash*, ordered by chunk index."""
        with self._lock:
            hits = [r for r in self._records.values() if r["metadata"]["content_hash"] == content_hash]
        return sorted(hits, key=lambda r: r["metadata"]["chunk_index"])

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _drop(self, content_hash: str) -> None:
        stale = [rid for rid, r in self._records.items() if r["metadata"]["content_hash"] == content_hash]
        for rid in stale:
            del self._records[rid]
