"""
Single-flight guard for reconciliation passes.
"""

import fcntl
import logging
from pathlib import Path
from typing import IO, Optional

logger = logging.getLogger(__name__)


class PassLock:
    """
    Allows at most one reconciliation pass per host at a time.

    Inside one process a flag is enough, since passes run on one event loop.
    Across processes an exclusive non-blocking ``flock`` on a lock file keeps
    a double-fired trigger from starting a second pass.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._held = False
        self._file: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns:
            True if acquired, False if another pass holds it
        """
        if self._held:
            return False

        if self.path is not None:
            lock_file = open(self.path, "w")
            try:
                fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                lock_file.close()
                logger.info(f"Another pass holds {self.path}")
                return False
            self._file = lock_file

        self._held = True
        return True

    def release(self) -> None:
        if self._file is not None:
            fcntl.flock(self._file, fcntl.LOCK_UN)
            self._file.close()
            self._file = None
        self._held = False
