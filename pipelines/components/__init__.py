"""KFP v2 components — each file exports one @dsl.component."""

from pipelines.components.process import process_ingestion_task

__all__ = [
    "process_ingestion_task",
]
