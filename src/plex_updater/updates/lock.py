"""
Advisory run lock.

Update and rollback runs mutate the same Plex data directory, backup
directory and service. Each run holds an exclusive flock on a shared lock file
so that a second invocation fails fast instead of interleaving with the first.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from types import TracebackType

from plex_updater.errors import ConcurrentRunError, UpdaterError
from plex_updater.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """
    Exclusive, non-blocking lock on a file, used as a context manager.

    Example:
        >>> with RunLock(Path("/run/lock/plex-updater.lock")):
        ...     ...
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Raises:
            ConcurrentRunError: If another process holds the lock.
            UpdaterError: If the lock file cannot be opened.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise UpdaterError(
                error_code="lock_unavailable",
                message=f"Cannot open lock file: {self.path}",
                details={"path": str(self.path), "error": str(e)},
            ) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise ConcurrentRunError(
                "Another update or rollback is already running",
                details={"lock_file": str(self.path)},
            ) from e

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Run lock acquired", extra={"lock_file": str(self.path)})

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Run lock released", extra={"lock_file": str(self.path)})

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
