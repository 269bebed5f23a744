"""Domain models for ingestion tasks, parsed text units, and task outcomes."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class IngestionTask(BaseModel):
    """One unit of work: a stored file to retrieve, parse, and embed.

    The job message uses camelCase keys (``contentHash``, ``storageReference``,
    ``ownerId``, ``orgScope``, ``isPublic``).  Messages produced by the legacy
    uploader (``fileMd5``, ``filePath``, ``userId``, ``orgTag``, ``public``)
    are accepted as well.

    Attributes
    ----------
    content_hash:
        Hash of the file content — the idempotency key for every
        downstream write.
    storage_reference:
        Local file path or ``http(s)://`` URL of the stored bytes.
    owner_id:
        Identifier of the uploading user.
    org_scope:
        Organisation tag restricting visibility (``None`` for none).
    is_public:
        Whether the document is visible outside ``org_scope``.
    """

    model_config = ConfigDict(frozen=True)

    content_hash: str = Field(
        min_length=1,
        validation_alias=AliasChoices("content_hash", "contentHash", "fileMd5"),
        serialization_alias="contentHash",
    )
    storage_reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices("storage_reference", "storageReference", "filePath"),
        serialization_alias="storageReference",
    )
    owner_id: str = Field(
        validation_alias=AliasChoices("owner_id", "ownerId", "userId"),
        serialization_alias="ownerId",
    )
    org_scope: str | None = Field(
        default=None,
        validation_alias=AliasChoices("org_scope", "orgScope", "orgTag"),
        serialization_alias="orgScope",
    )
    is_public: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_public", "isPublic", "public"),
        serialization_alias="isPublic",
    )

    @classmethod
    def from_message(cls, message: str | bytes | dict[str, Any]) -> IngestionTask:
        """Decode a job message (JSON text/bytes or an already-parsed dict)."""
        if isinstance(message, (str, bytes, bytearray)):
            return cls.model_validate(json.loads(message))
        return cls.model_validate(message)

    def to_message(self) -> dict[str, Any]:
        """Return the wire representation (camelCase keys)."""
        return self.model_dump(by_alias=True)


class TextUnit(BaseModel):
    """A chunk of parsed document text, ordered within its document."""

    content_hash: str
    chunk_index: int = Field(ge=0)
    text: str
    owner_id: str = ""
    org_scope: str | None = None
    is_public: bool = False

    @property
    def unit_id(self) -> str:
        """Deterministic ``<content_hash>_<chunk_index>`` identifier."""
        return f"{self.content_hash}_{self.chunk_index}"


class TaskState(str, Enum):
    RECEIVED = "received"
    RETRIEVING = "retrieving"
    PARSING = "parsing"
    PERSISTING = "persisting"
    VECTORIZING = "vectorizing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskResult(BaseModel):
    """Outcome of a successful :meth:`PipelineWorker.process` call."""

    content_hash: str
    state: TaskState = TaskState.COMPLETED
    text_units: int = 0
    vectors: int = 0
    elapsed_seconds: float = 0.0

    def summary(self) -> str:
        return (
            f"Ingested {self.content_hash}: {self.text_units} text units, "
            f"{self.vectors} vectors in {self.elapsed_seconds:.1f}s"
        )
