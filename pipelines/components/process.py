"""KFP v2 component — Process one ingestion task end-to-end.

Runs :class:`rag_ingest.ingestion.worker.PipelineWorker` for a single job
message: retrieve the stored file, parse and persist its text units, then
embed and index them.  A retryable failure raises out of the component so
KFP's retry policy (``set_retry``) redelivers the task; once retries are
exhausted the run records it as failed.  Failures marked non-retryable
(``AccessDenied``, ``UnsupportedReference``, ...) are logged, counted in the
``rejected`` metric and returned as a ``"Rejected ..."`` summary instead,
so they are not re-run pointlessly.

Input contract (the job message)::

    {
      "contentHash":      "<content hash, idempotency key>",
      "storageReference": "<local path or http(s) URL>",
      "ownerId":          "<uploading user>",
      "orgScope":         "<organisation tag or null>",
      "isPublic":         false
    }

Local testing
-------------
    from pipelines.components.process import process_ingestion_task
    process_ingestion_task.python_func(
        task={"contentHash": "abc", "storageReference": "/tmp/a.md", "ownerId": "u1"},
        metrics=_FakeArtifact("/tmp/metrics"),
    )
"""

from kfp import dsl


@dsl.component(
    base_image="python:3.11-slim",
    packages_to_install=[
        "rag-ingest>=0.1,<1",
    ],
)
def process_ingestion_task(
    task: dict,
    metrics: dsl.Output[dsl.Metrics],
) -> str:
    """Retrieve, parse, and vectorize the file described by *task*.

    Parameters
    ----------
    task:
        Job message (see module docstring); legacy keys are accepted too.
    metrics:
        Output Metrics artifact with per-task statistics.

    Returns
    -------
    str
        Summary, e.g. ``"Ingested abc: 12 text units, 12 vectors in 3.4s"``,
        or ``"Rejected abc: AccessDenied: ..."`` for a non-retryable failure.
    """
    import logging

    from rag_ingest.errors import IngestionError
    from rag_ingest.ingestion.models import IngestionTask
    from rag_ingest.ingestion.worker import build_worker

    logging.basicConfig(level=logging.INFO)
    log = logging.getLogger("process_ingestion_task")

    ingestion_task = IngestionTask.from_message(task)
    log.info("Processing %s from %s", ingestion_task.content_hash, ingestion_task.storage_reference)

    try:
        result = build_worker().process(ingestion_task)
    except IngestionError as exc:
        if exc.retryable:
            raise
        # Retrying cannot help (expired link, unsupported reference); record and stop.
        log.error("Rejecting %s without retry: %s", ingestion_task.content_hash, exc)
        metrics.log_metric("rejected", 1)
        return f"Rejected {ingestion_task.content_hash}: {type(exc).__name__}: {exc}"

    # KFP Metrics
    metrics.log_metric("text_units", result.text_units)
    metrics.log_metric("vectors_indexed", result.vectors)
    metrics.log_metric("elapsed_seconds", result.elapsed_seconds)
    metrics.log_metric("rejected", 0)

    msg = result.summary()
    log.info(msg)
    return msg
