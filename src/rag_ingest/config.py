"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class EmbeddingConfig(BaseModel):
    """Construction-time settings for :class:`~rag_ingest.ingestion.embedding.EmbeddingClient`."""

    base_url: str
    api_key: str = ""
    model: str
    dimension: int = Field(default=2048, gt=0)
    batch_size: int = Field(default=100, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    batch_timeout: float = Field(default=30.0, gt=0)


class RetrievalConfig(BaseModel):
    """Construction-time settings for the file retrieval adapter."""

    connect_timeout: float = Field(default=30.0, gt=0)
    read_timeout: float = Field(default=180.0, gt=0)
    user_agent: str = "rag-ingest-file-processor/0.1"
    spool_max_bytes: int = Field(default=16 * 1024 * 1024, ge=0)


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding provider (OpenAI-compatible /embeddings endpoint)
    embedding_api_base_url: str = Field(
        default="https://dashscope.aliyuncs.com/compatible-mode/v1",
        description="Base URL of the embedding API; '/embeddings' is appended.",
    )
    embedding_api_key: str = Field(default="", description="Bearer token for the embedding API")
    embedding_model: str = "text-embedding-v4"
    embedding_dimension: int = 2048
    embedding_batch_size: int = 100
    embedding_max_retries: int = 3
    embedding_retry_delay: float = 1.0
    embedding_batch_timeout: float = 30.0

    # File retrieval
    retrieval_connect_timeout: float = 30.0
    retrieval_read_timeout: float = 180.0
    retrieval_user_agent: str = "rag-ingest-file-processor/0.1"
    retrieval_spool_max_bytes: int = 16 * 1024 * 1024

    # Parsing
    chunk_size: int = 512
    chunk_overlap: int = 64
    text_unit_dir: str = Field(
        default="./data/text_units",
        description="Directory holding one JSON-Lines file of parsed chunks per content hash.",
    )
    lock_dir: str = Field(
        default="",
        description="Directory for per-hash lock files; defaults to <text_unit_dir>/.locks.",
    )

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "rag_ingest"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            base_url=self.embedding_api_base_url,
            api_key=self.embedding_api_key,
            model=self.embedding_model,
            dimension=self.embedding_dimension,
            batch_size=self.embedding_batch_size,
            max_retries=self.embedding_max_retries,
            retry_delay=self.embedding_retry_delay,
            batch_timeout=self.embedding_batch_timeout,
        )

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(
            connect_timeout=self.retrieval_connect_timeout,
            read_timeout=self.retrieval_read_timeout,
            user_agent=self.retrieval_user_agent,
            spool_max_bytes=self.retrieval_spool_max_bytes,
        )


# Singleton — import `settings` wherever needed.
settings = Settings()
