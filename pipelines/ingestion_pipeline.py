"""KFP v2 pipeline — Fan ingestion tasks out across a bounded worker pool.

Each task runs in its own ``process_ingestion_task`` container:

    task[0] ─┐
    task[1] ─┼─ ParallelFor(parallelism=N) → retrieve → parse → vectorize
    task[n] ─┘

Tasks are independent; ``parallelism`` bounds how many run at once.  A
failing task is retried up to ``max_attempts - 1`` times with backoff,
which gives at-least-once processing — safe because every write is an
upsert keyed by content hash.

Compile
-------
    python -m pipelines.ingestion_pipeline --compile
"""

from kfp import compiler, dsl

from pipelines.components.process import process_ingestion_task

DEFAULT_PARALLELISM = 4
DEFAULT_MAX_ATTEMPTS = 3


# ──────────────────────────────────────────────────────────────────────
# Pipeline definition
# ──────────────────────────────────────────────────────────────────────


@dsl.pipeline(
    name="rag-ingestion-pipeline",
    description=(
        "Process uploaded files: retrieve bytes → parse and persist text "
        "units → embed and index vectors.  One container per task."
    ),
)
def ingestion_pipeline(tasks: list) -> None:
    """Process every job message in *tasks*.

    Parameters
    ----------
    tasks:
        List of job messages (``contentHash``, ``storageReference``,
        ``ownerId``, ``orgScope``, ``isPublic``).
    """
    with dsl.ParallelFor(items=tasks, parallelism=DEFAULT_PARALLELISM) as task:
        process_ingestion_task(task=task).set_retry(
            num_retries=DEFAULT_MAX_ATTEMPTS - 1,
            backoff_duration="30s",
            backoff_factor=2.0,
        )


# ──────────────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────────────


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="RAG ingestion pipeline")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Compile pipeline to YAML",
    )
    parser.add_argument(
        "--output",
        default="pipelines/compiled/ingestion_pipeline.yaml",
        help="Output path for compiled YAML",
    )
    args = parser.parse_args()

    if args.compile:
        compiler.Compiler().compile(ingestion_pipeline, args.output)
        print(f"Pipeline compiled → {args.output}")
