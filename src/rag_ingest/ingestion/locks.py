"""Advisory per-content-hash locks.

Duplicate deliveries of the same task can arrive concurrently.  Holding
the lock for a hash around parse → vectorize serialises them:

- threads of one process share a re-entrant lock per hash;
- processes (one KFP container per task) share a ``<hash>.lock`` file
  under ``lock_dir``, which must sit on the volume all workers mount.

Without a ``lock_dir`` only the in-process half applies.  Upsert-by-hash in
the stores keeps the final state correct either way; the lock keeps two
deliveries from interleaving their writes.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class HashLockRegistry:
    """Hands out one re-entrant lock per content hash, reference counted.

    Parameters
    ----------
    lock_dir:
        Directory for cross-process lock files.  Created on first use.
        ``None`` limits exclusion to the current process.
    """

    def __init__(self, lock_dir: str | Path | None = None) -> None:
        self.lock_dir = Path(lock_dir) if lock_dir is not None else None
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._file_locks: dict[str, FileLock] = {}
        self._refs: dict[str, int] = {}

    @contextmanager
    def hold(self, content_hash: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(content_hash, threading.RLock())
            file_lock = self._file_lock(content_hash)
            self._refs[content_hash] = self._refs.get(content_hash, 0) + 1

        try:
            if not lock.acquire(blocking=False):
                logger.info("Waiting for in-flight task on %s", content_hash)
                lock.acquire()
            try:
                if file_lock is not None:
                    try:
                        file_lock.acquire(timeout=0)
                    except Timeout:
                        logger.info("Waiting for another worker process on %s", content_hash)
                        file_lock.acquire()
                try:
                    yield
                finally:
                    if file_lock is not None:
                        file_lock.release()
            finally:
                lock.release()
        finally:
            with self._guard:
                self._refs[content_hash] -= 1
                if self._refs[content_hash] == 0:
                    del self._refs[content_hash]
                    del self._locks[content_hash]
                    self._file_locks.pop(content_hash, None)

    def _file_lock(self, content_hash: str) -> FileLock | None:
        if self.lock_dir is None:
            return None
        file_lock = self._file_locks.get(content_hash)
        if file_lock is None:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            name = content_hash
            if not _SAFE_NAME.match(name):
                name = hashlib.sha256(content_hash.encode()).hexdigest()
            file_lock = FileLock(str(self.lock_dir / f"{name}.lock"))
            self._file_locks[content_hash] = file_lock
        return file_lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
