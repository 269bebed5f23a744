"""Text chunking strategies."""

from __future__ import annotations

from langchain_text_splitters import RecursiveCharacterTextSplitter

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


def chunk_text(
    text: str,
    chunk_size: int = 512,
    chunk_overlap: int = 64,
    separators: list[str] | None = None,
) -> list[str]:
    """Split *text* into overlapping chunks for embedding.

    Parameters
    ----------
    text:
        Normalised plain text of one document.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.
    separators:
        Split boundaries in priority order.

    Returns
    -------
    list[str]
        Chunks in document order; empty when *text* is blank.
    """
    if chunk_overlap >= chunk_size:
        raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})")
    if not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=separators or DEFAULT_SEPARATORS,
    )
    return splitter.split_text(text)
