"""Abstract base class for vector-index backends.

Adding a new backend (Pinecone, Weaviate, Qdrant …) only requires
subclassing :class:`VectorIndexBase` and implementing the abstract
methods.  The vectorization service is backend-agnostic.

Every backend must treat :meth:`VectorIndexBase.upsert` as a keyed
overwrite: record IDs are derived from ``(content_hash, chunk_index)`` so
indexing the same document twice leaves exactly one record per chunk.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rag_ingest.ingestion.models import TextUnit


def unit_metadata(unit: TextUnit) -> dict[str, Any]:
    """Flat metadata stored next to each vector (``None`` values omitted)."""
    meta: dict[str, Any] = {
        "content_hash": unit.content_hash,
        "chunk_index": unit.chunk_index,
        "owner_id": unit.owner_id,
        "is_public": unit.is_public,
    }
    if unit.org_scope is not None:
        meta["org_scope"] = unit.org_scope
    return meta


class VectorIndexBase(ABC):
    """Backend-agnostic vector-index interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(self, content_hash: str, units: list[TextUnit], vectors: list[list[float]]) -> int:
        """Write one record per unit for *content_hash*, replacing earlier ones.

        Records left over from a previous, longer version of the document
        (chunk indices ``>= len(units)``) must be removed.

        Returns the number of records written.
        """
        ...

    @abstractmethod
    def count(self, content_hash: str) -> int:
        """Return how many records are stored for *content_hash*."""
        ...

    @abstractmethod
    def delete(self, content_hash: str) -> None:
        """Remove every record for *content_hash*."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def check_alignment(content_hash: str, units: list[TextUnit], vectors: list[list[float]]) -> None:
        """Raise ``ValueError`` unless units and vectors pair up 1:1 for *content_hash*."""
        if len(units) != len(vectors):
            raise ValueError(f"{len(units)} text units but {len(vectors)} vectors for {content_hash}")
        foreign = {u.content_hash for u in units} - {content_hash}
        if foreign:
            raise ValueError(f"Text units for {sorted(foreign)} passed under {content_hash}")
