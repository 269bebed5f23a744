"""Persistence for parsed text units, keyed by content hash.

All writes are whole-document replacements: saving the units for a hash
overwrites whatever was stored for it before.  Reprocessing the same file
therefore never duplicates chunks, which is what at-least-once delivery
requires.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from rag_ingest.ingestion.models import TextUnit

logger = logging.getLogger(__name__)

_SAFE_HASH = re.compile(r"^[A-Za-z0-9_-]+$")


class TextUnitStore(ABC):
    """Backend-agnostic text unit storage."""

    @abstractmethod
    def replace(self, content_hash: str, units: list[TextUnit]) -> None:
        """Store *units* as the complete chunk list for *content_hash*."""
        ...

    @abstractmethod
    def load(self, content_hash: str) -> list[TextUnit]:
        """Return the units for *content_hash* ordered by chunk index (``[]`` if none)."""
        ...

    @abstractmethod
    def delete(self, content_hash: str) -> None:
        ...


class InMemoryTextUnitStore(TextUnitStore):
    """Process-local store, used for tests and single-process runs."""

    def __init__(self) -> None:
        self._units: dict[str, list[TextUnit]] = {}
        self._lock = threading.Lock()

    def replace(self, content_hash: str, units: list[TextUnit]) -> None:
        with self._lock:
            self._units[content_hash] = sorted(units, key=lambda u: u.chunk_index)

    def load(self, content_hash: str) -> list[TextUnit]:
        with self._lock:
            return list(self._units.get(content_hash, []))

    def delete(self, content_hash: str) -> None:
        with self._lock:
            self._units.pop(content_hash, None)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(units) for units in self._units.values())


class JsonlTextUnitStore(TextUnitStore):
    """One JSON-Lines file per content hash under *root*.

    Files are written to a temporary sibling and moved into place with
    :func:`os.replace`, so readers see either the old or the new chunk
    list, never a mix.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, content_hash: str) -> Path:
        if not _SAFE_HASH.match(content_hash):
            raise ValueError(f"Invalid content hash: {content_hash!r}")
        return self.root / f"{content_hash}.jsonl"

    def replace(self, content_hash: str, units: list[TextUnit]) -> None:
        target = self._path(content_hash)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{content_hash}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                for unit in sorted(units, key=lambda u: u.chunk_index):
                    fh.write(json.dumps(unit.model_dump(), ensure_ascii=False) + "\n")
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d text units to %s", len(units), target)

    def load(self, content_hash: str) -> list[TextUnit]:
        path = self._path(content_hash)
        if not path.exists():
            return []
        units: list[TextUnit] = []
        with open(path, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    units.append(TextUnit.model_validate_json(line))
        return units

    def delete(self, content_hash: str) -> None:
        self._path(content_hash).unlink(missing_ok=True)
