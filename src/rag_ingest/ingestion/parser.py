"""Parse service — turn raw file bytes into stored text units.

Text extraction is deliberately simple: PDFs go through ``pypdf``, HTML
through BeautifulSoup with boiler-plate tags stripped, and everything else
is decoded as UTF-8.  The normalised text is chunked and written to a
:class:`~rag_ingest.ingestion.text_store.TextUnitStore` under the file's
content hash, replacing any earlier parse of the same content.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import BinaryIO

from bs4 import BeautifulSoup
from pypdf import PdfReader

from rag_ingest.ingestion.chunker import chunk_text
from rag_ingest.ingestion.models import TextUnit
from rag_ingest.ingestion.text_store import TextUnitStore

logger = logging.getLogger(__name__)

_SNIFF_BYTES = 1024
_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def normalise(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)       # collapse spaces (keep \n)
    text = re.sub(r"\n{3,}", "\n\n", text)       # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)  # ctrl chars
    return text.strip()


def _looks_like_html(head: bytes) -> bool:
    lowered = head.lstrip().lower()
    return lowered.startswith((b"<!doctype html", b"<html")) or b"<body" in lowered


def extract_text(stream: BinaryIO) -> str:
    """Extract normalised plain text from a seekable binary *stream*."""
    head = stream.read(_SNIFF_BYTES)
    stream.seek(0)

    if head.startswith(b"%PDF"):
        reader = PdfReader(stream)
        pages = [page.extract_text() or "" for page in reader.pages]
        logger.debug("Extracted text from %d PDF pages", len(pages))
        return normalise("\n\n".join(pages))

    decoded = stream.read().decode("utf-8-sig", errors="replace")
    if _looks_like_html(head):
        soup = BeautifulSoup(decoded, "html.parser")
        for tag in soup(_BOILERPLATE_TAGS):
            tag.decompose()
        return normalise(soup.get_text(separator="\n", strip=True))
    return normalise(decoded)


class ParseService:
    """Parse a file stream and persist its chunks keyed by content hash.

    Parameters
    ----------
    store:
        Destination for the parsed text units.
    chunk_size / chunk_overlap:
        Chunking parameters forwarded to :func:`chunk_text`.
    """

    def __init__(self, store: TextUnitStore, *, chunk_size: int = 512, chunk_overlap: int = 64) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})")
        self.store = store
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def parse_and_save(
        self,
        content_hash: str,
        stream: BinaryIO,
        owner_id: str,
        org_scope: str | None,
        is_public: bool,
    ) -> int:
        """Parse *stream* and replace the stored units for *content_hash*.

        Returns the number of text units written.
        """
        text = extract_text(stream)
        chunks = chunk_text(text, chunk_size=self.chunk_size, chunk_overlap=self.chunk_overlap)
        units = [
            TextUnit(
                content_hash=content_hash,
                chunk_index=idx,
                text=chunk,
                owner_id=owner_id,
                org_scope=org_scope,
                is_public=is_public,
            )
            for idx, chunk in enumerate(chunks)
        ]
        self.store.replace(content_hash, units)
        logger.info("Parsed %s into %d text units (%d chars)", content_hash, len(units), len(text))
        return len(units)
