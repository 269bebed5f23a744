"""Exception taxonomy for the ingestion pipeline.

Every error raised out of :meth:`PipelineWorker.process
<rag_ingest.ingestion.worker.PipelineWorker.process>` derives from
:class:`IngestionError`.  The transport decides between redelivery and
dead-lettering from :attr:`IngestionError.retryable`; the KFP component
(``pipelines.components.process``) re-raises retryable errors for
``set_retry`` and records the rest as rejected.

Hierarchy::

    IngestionError
    ├── RetrievalError
    │   ├── RetrievalFailed        (storage / network, optional HTTP status)
    │   ├── AccessDenied           (HTTP 403, e.g. expired pre-signed URL)
    │   └── UnsupportedReference   (neither a local file nor an http(s) URL)
    ├── EmbeddingError
    │   ├── EmbeddingFailed        (retries exhausted, timeout, bad response)
    │   └── MalformedResponse      (``data`` missing / not a list, count mismatch)
    ├── ParseOrPersistFailed
    └── VectorizeFailed
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for all pipeline failures."""

    retryable: bool = True

    def __init__(self, message: str, *, content_hash: str | None = None) -> None:
        super().__init__(message)
        self.content_hash = content_hash


# -- retrieval ----------------------------------------------------------------


class RetrievalError(IngestionError):
    """The stored file could not be turned into a readable byte stream."""


class RetrievalFailed(RetrievalError):
    """Network or storage failure; ``status_code`` is set for HTTP responses."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        content_hash: str | None = None,
    ) -> None:
        super().__init__(message, content_hash=content_hash)
        self.status_code = status_code


class AccessDenied(RetrievalError):
    retryable = False


class UnsupportedReference(RetrievalError):
    retryable = False


# -- embedding ----------------------------------------------------------------


class EmbeddingError(IngestionError):
    """Base for embedding-provider failures."""


class MalformedResponse(EmbeddingError):
    """The provider answered, but not with the expected ``{data: [...]}`` shape."""

    retryable = False


class EmbeddingFailed(EmbeddingError):
    """An embedding batch could not be completed; ``cause`` holds the last error."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


# -- stage wrappers -----------------------------------------------------------


class ParseOrPersistFailed(IngestionError):
    pass


class VectorizeFailed(IngestionError):
    pass
