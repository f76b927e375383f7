"""Cross-process lock for registry operations."""

import fcntl
import logging
from pathlib import Path
from types import TracebackType
from typing import IO

from aether.errors import StateError

logger = logging.getLogger(__name__)


class FileLock:
    """Exclusive advisory lock on a lock file.

    Serializes the full load-modify-store sequence of every registry
    operation across independent processes. The lock file is created on
    demand and left in place; only its lock state matters.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._file: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._path, "w")
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            if self._file is not None:
                self._file.close()
                self._file = None
            raise StateError(f"Failed to acquire lock: {e}") from e
        logger.debug("Acquired lock: %s", self._path)

    def release(self) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug("Released lock: %s", self._path)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
