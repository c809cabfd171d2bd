import fcntl
import os
from typing import Optional, TextIO

from linesync.errors import PersistenceError


class SingleWriterLock:
    """
    Enforces a single-process writer for a JSON cache file.
    Uses a filesystem lock. Safe for WSL + Linux.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[TextIO] = None

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        self._fd = open(self.path, "w")
        try:
            fcntl.flock(self._fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._fd.close()
            self._fd = None
            raise PersistenceError("cache_locked", f"single-writer lock already held: {self.path}")
        except OSError as e:
            self._fd.close()
            self._fd = None
            raise PersistenceError("cache_lock_failed", f"cannot lock {self.path}: {e}")

    def release(self) -> None:
        if self._fd:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None

    def __enter__(self) -> "SingleWriterLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
