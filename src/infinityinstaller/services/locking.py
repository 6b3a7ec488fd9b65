"""Advisory lock that serializes installer runs against one install directory."""

import fcntl
import os
from typing import Optional

from infinityinstaller.errors import LockError
from infinityinstaller.errors_catalog import actionable_error


class InstallLock:
    """Non-blocking exclusive lock on ``<installDir>/.installer.lock``.

    The owning PID is written into the file for diagnostics. The file is
    left in place on release; only the OS lock matters.
    """

    def __init__(self, lock_path: str, logger):
        self.lock_path = lock_path
        self.logger = logger
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _read_owner(self, fd: int) -> str:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            return os.read(fd, 32).decode("ascii", errors="ignore").strip()
        except OSError:
            return ""

    def acquire(self):
        if self._fd is not None:
            return

        try:
            os.makedirs(os.path.dirname(self.lock_path) or ".", exist_ok=True)
            fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as exc:
            raise LockError(f"Failed to open lock file {self.lock_path}: {exc}") from exc

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            owner = self._read_owner(fd)
            os.close(fd)
            owner_text = f", held by PID {owner}" if owner else ""
            raise LockError(actionable_error("lock_held", path=self.lock_path, owner=owner_text)) from exc

        try:
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, str(os.getpid()).encode("ascii"))
        except OSError as exc:
            self.logger.debug("Could not record PID in %s: %s", self.lock_path, exc)

        self._fd = fd
        self.logger.debug("Acquired install lock %s", self.lock_path)

    def release(self):
        if self._fd is None:
            return

        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            self.logger.warning("Failed to unlock %s: %s", self.lock_path, exc)
        finally:
            os.close(fd)
        self.logger.debug("Released install lock %s", self.lock_path)

    def __enter__(self) -> "InstallLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, traceback):
        self.release()
        return False
