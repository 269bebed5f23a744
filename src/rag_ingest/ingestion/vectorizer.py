"""Vectorization service — embed stored text units and index the vectors."""

from __future__ import annotations

import logging

from langchain_core.embeddings import Embeddings

from rag_ingest.errors import EmbeddingFailed
from rag_ingest.index.base import VectorIndexBase
from rag_ingest.ingestion.text_store import TextUnitStore

logger = logging.getLogger(__name__)


class VectorizationService:
    """Pull the parsed units for a content hash, embed them, upsert the vectors.

    Parameters
    ----------
    store:
        Where :class:`~rag_ingest.ingestion.parser.ParseService` saved the units.
    embeddings:
        Any LangChain ``Embeddings``; in production an
        :class:`~rag_ingest.ingestion.embedding.EmbeddingClient`.
    index:
        Destination vector index.
    """

    def __init__(self, store: TextUnitStore, embeddings: Embeddings, index: VectorIndexBase) -> None:
        self.store = store
        self.embeddings = embeddings
        self.index = index

    def vectorize(self, content_hash: str, owner_id: str, org_scope: str | None, is_public: bool) -> int:
        """Embed and index every unit stored for *content_hash*.

        Ownership and visibility come from the arguments, so a re-upload
        with changed permissions updates the indexed metadata.

        Returns the number of vectors written.
        """
        units = self.store.load(content_hash)
        if not units:
            logger.warning("No text units stored for %s; clearing its index entries", content_hash)
            self.index.delete(content_hash)
            return 0

        units = [
            u.model_copy(update={"owner_id": owner_id, "org_scope": org_scope, "is_public": is_public})
            for u in units
        ]
        vectors = self.embeddings.embed_documents([u.text for u in units])
        if len(vectors) != len(units):
            raise EmbeddingFailed(
                f"Embedding count mismatch for {content_hash}: "
                f"{len(vectors)} vectors for {len(units)} text units"
            )

        written = self.index.upsert(content_hash, units, vectors)
        logger.info("Vectorized %s: %d vectors -> collection '%s'",
                    content_hash, written, self.index.collection_name)
        return written
