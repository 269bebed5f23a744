"""Chroma implementation of the vector-index abstraction."""

from __future__ import annotations

import logging
import time

from rag_ingest.config import settings
from rag_ingest.index.base import VectorIndexBase, unit_metadata
from rag_ingest.ingestion.models import TextUnit

logger = logging.getLogger(__name__)


class ChromaVectorIndex(VectorIndexBase):
    """Chroma-backed vector index.

    Record IDs are ``<content_hash>_<chunk_index>`` so re-runs overwrite
    instead of duplicating.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    distance_metric:
        ``cosine`` | ``l2`` | ``ip``.
    upsert_batch_size:
        Max records per upsert call (Chroma cap ≈ 41 666).
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        distance_metric: str = "cosine",
        upsert_batch_size: int = 5000,
    ) -> None:
        import chromadb

        super().__init__(collection_name)
        self.upsert_batch_size = upsert_batch_size
        self._client = chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": distance_metric},
        )

    # -- VectorIndexBase overrides --------------------------------------------

    def upsert(self, content_hash: str, units: list[TextUnit], vectors: list[list[float]]) -> int:
        self.check_alignment(content_hash, units, vectors)

        ids = [u.unit_id for u in units]
        documents = [u.text for u in units]
        metadatas = [unit_metadata(u) for u in units]

        t0 = time.monotonic()
        batches = 0
        for start in range(0, len(ids), self.upsert_batch_size):
            end = start + self.upsert_batch_size
            self._collection.upsert(
                ids=ids[start:end],
                embeddings=vectors[start:end],
                documents=documents[start:end],
                metadatas=metadatas[start:end],
            )
            batches += 1
            logger.debug("  upserted batch %d (%d-%d)", batches, start, min(end, len(ids)))

        # Drop chunks left over from a longer earlier version of this content.
        self._collection.delete(
            where={"$and": [
                {"content_hash": {"$eq": content_hash}},
                {"chunk_index": {"$gte": len(ids)}},
            ]}
        )
        logger.info("Indexed %d vectors for %s in %.1fs (%d batches)",
                    len(ids), content_hash, time.monotonic() - t0, batches)
        return len(ids)

    def count(self, content_hash: str) -> int:
        result = self._collection.get(where={"content_hash": {"$eq": content_hash}}, include=[])
        return len(result.get("ids", []))

    def delete(self, content_hash: str) -> None:
        self._collection.delete(where={"content_hash": {"$eq": content_hash}})

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
