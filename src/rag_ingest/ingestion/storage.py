"""File retrieval adapter — resolve a storage reference to a byte stream.

A reference is either a path on the local filesystem or an ``http(s)://``
URL (typically a pre-signed object-storage link).  Every failure is raised
as a :class:`~rag_ingest.errors.RetrievalError`; a half-open or garbage
stream is never handed back.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

import requests

from rag_ingest.config import RetrievalConfig
from rag_ingest.errors import AccessDenied, RetrievalFailed, UnsupportedReference

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = ("http://", "https://")


def _is_local_file(reference: str) -> bool:
    try:
        return Path(reference).exists()
    except (OSError, ValueError):
        # e.g. long pre-signed URLs exceed the platform's name limit
        return False


def open_reference(reference: str, config: RetrievalConfig | None = None) -> BinaryIO:
    """Open *reference* and return a readable binary stream at offset zero.

    The caller owns the returned stream and must close it.

    Raises
    ------
    AccessDenied
        The URL answered HTTP 403 (commonly an expired pre-signed URL).
    RetrievalFailed
        Any other non-200 status, network error, timeout, or local I/O error.
    UnsupportedReference
        *reference* is neither an existing path nor an http(s) URL.
    """
    config = config or RetrievalConfig()
    logger.info("Downloading file from storage: %s", reference)

    if _is_local_file(reference):
        logger.info("Detected file system path: %s", reference)
        try:
            return open(reference, "rb")
        except OSError as exc:
            raise RetrievalFailed(f"Cannot open local file {reference}: {exc}") from exc

    if reference.startswith(_HTTP_SCHEMES):
        logger.info("Detected remote URL: %s", reference)
        return _open_url(reference, config)

    raise UnsupportedReference(f"Unsupported storage reference: {reference!r}")


def _open_url(url: str, config: RetrievalConfig) -> BinaryIO:
    try:
        response = requests.get(
            url,
            headers={"User-Agent": config.user_agent},
            timeout=(config.connect_timeout, config.read_timeout),
            stream=True,
        )
    except requests.RequestException as exc:
        raise RetrievalFailed(f"Failed to download {url}: {exc}") from exc

    status = response.status_code
    if status == 200:
        logger.info("Connected to %s, starting download", url)
        # Let urllib3 undo any Content-Encoding while the body streams.
        response.raw.decode_content = True
        return response.raw

    response.close()
    if status == 403:
        logger.error("Access forbidden for %s - the pre-signed URL may have expired", url)
        raise AccessDenied("Access forbidden - the pre-signed URL may have expired")
    logger.error("Failed to download file, HTTP response code %d for URL %s", status, url)
    raise RetrievalFailed(
        f"Failed to download file, HTTP response code: {status}", status_code=status
    )


def make_replayable(stream: BinaryIO | None, spool_max_bytes: int = 16 * 1024 * 1024) -> BinaryIO:
    """Return a seekable view of *stream* positioned at offset zero.

    Seekable streams (local files) are returned as-is.  Anything else
    (network bodies) is copied into a :class:`tempfile.SpooledTemporaryFile`
    that stays in memory up to *spool_max_bytes* and then rolls over to
    disk.  The original stream is left open; when a new spool is returned
    the caller owns both.

    Raises
    ------
    RetrievalFailed
        The stream is missing, empty, or breaks while being buffered.
    """
    if stream is None:
        raise RetrievalFailed("Storage returned no stream")

    if stream.seekable():
        if not stream.read(1):
            raise RetrievalFailed("Storage returned an empty stream")
        stream.seek(0)
        return stream

    spool = tempfile.SpooledTemporaryFile(max_size=spool_max_bytes)
    try:
        shutil.copyfileobj(stream, spool)
        size = spool.tell()
        if size == 0:
            raise RetrievalFailed("Storage returned an empty stream")
        spool.seek(0)
    except RetrievalFailed:
        spool.close()
        raise
    except Exception as exc:
        spool.close()
        raise RetrievalFailed(f"Download interrupted: {exc}") from exc

    logger.debug("Buffered %d bytes from non-seekable stream", size)
    return spool  # type: ignore[return-value]
