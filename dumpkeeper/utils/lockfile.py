"""
Advisory lock file held around a dump run.

Two dump runs against the same backup directory would race on the watermark
and could prune a file the other run is still writing, so each run takes an
exclusive lock file in the backup directory first.
"""

import os
import time
import errno
import logging
from pathlib import Path


logger = logging.getLogger(__name__)

LOCK_FILE_NAME = '.dumpkeeper.lock'


class RunLock:
    """
    Exclusive pid lock file created with O_EXCL.

    A lock file older than stale_seconds is assumed to belong to a crashed
    run and is replaced.
    """

    def __init__(self, directory: str, stale_seconds: int = 21600):
        self.path = Path(directory) / LOCK_FILE_NAME
        self.stale_seconds = stale_seconds
        self.acquired = False

    def acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns:
            True if the lock is now held, False if another run holds it

        Raises:
            OSError: If the lock file cannot be created for another reason
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o640)
            except OSError as e:
                if e.errno != errno.EEXIST:
                    raise
                if not self._break_if_stale():
                    return False
                continue

            try:
                os.write(fd, str(os.getpid()).encode('utf-8'))
            finally:
                os.close(fd)
            self.acquired = True
            logger.debug(f"Acquired lock {self.path}")
            return True

        return False

    def release(self):
        """Remove the lock file if this instance holds it."""
        if not self.acquired:
            return
        try:
            self.path.unlink()
            logger.debug(f"Released lock {self.path}")
        except FileNotFoundError:
            pass
        self.acquired = False

    def holder_pid(self):
        """Return the pid written in the lock file, or None."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def _break_if_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            # Holder released it between our open and stat
            return True

        if age <= self.stale_seconds:
            return False

        logger.warning(
            f"Removing stale lock {self.path} (pid {self.holder_pid()}, age {int(age)}s)"
        )
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        return True

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
