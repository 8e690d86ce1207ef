"""Per-deployment run locking.

Two runs against the same container map would race on the hosts' id
allocation and storage locks, so each deployment name gets a flock.
"""
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from lxcmap.core.errors import LxcmapError
from lxcmap.core.logger import get_logger

logger = get_logger(__name__)


class LockError(LxcmapError):
    """Raised when unable to acquire lock."""


class RunLock:
    """File-based lock for preventing concurrent runs of one deployment."""

    def __init__(self, deployment: str, lock_dir: Optional[Path] = None, timeout: int = 0):
        """Initialize lock.

        Args:
            deployment: Deployment name the lock guards
            lock_dir: Directory holding lock files (default: /var/run/lxcmap)
            timeout: Seconds to wait for lock (0 = fail immediately)
        """
        self.deployment = deployment
        self.lock_file = self._resolve_lock_path(deployment, lock_dir)
        self.timeout = timeout
        self.lock_fd = None

    @staticmethod
    def _resolve_lock_path(deployment: str, lock_dir: Optional[Path]) -> Path:
        base = Path(lock_dir) if lock_dir else Path("/var/run/lxcmap")
        try:
            base.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            base = Path("/tmp/lxcmap-locks")
            base.mkdir(parents=True, exist_ok=True)
        return base / f"{deployment}.lock"

    def acquire(self) -> bool:
        """Acquire the lock.

        Raises:
            LockError: If another run holds the lock past the timeout
        """
        self.lock_fd = open(self.lock_file, 'a+')

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

                self.lock_fd.seek(0)
                self.lock_fd.truncate()
                self.lock_fd.write(f"{os.getpid()}\n")
                self.lock_fd.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                self.lock_fd.flush()

                logger.debug(f"Acquired lock: {self.lock_file}")
                return True

            except OSError:
                elapsed = time.time() - start_time
                if self.timeout == 0 or elapsed >= self.timeout:
                    lock_info = self._read_lock_info()
                    self.lock_fd.close()
                    self.lock_fd = None
                    raise LockError(
                        f"Another run of deployment '{self.deployment}' is in progress.\n"
                        f"Lock held by PID {lock_info['pid']} since {lock_info['time']}\n"
                        f"Wait for it to finish, or remove {self.lock_file} if stale."
                    )

                time.sleep(0.5)

    def release(self):
        """Release the lock and remove the lock file."""
        if self.lock_fd is None:
            return

        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
            self.lock_fd.close()
            logger.debug(f"Released lock: {self.lock_file}")
        finally:
            self.lock_fd = None

        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass

    def _read_lock_info(self) -> dict:
        """Read info from lock file about who holds it."""
        try:
            with open(self.lock_file) as f:
                lines = f.readlines()
            if len(lines) >= 2:
                return {'pid': lines[0].strip(), 'time': lines[1].strip()}
        except OSError:
            pass

        return {'pid': 'unknown', 'time': 'unknown'}

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@contextmanager
def run_lock(deployment: str, lock_dir: Optional[Path] = None, timeout: int = 0):
    """Context manager guarding one deployment run.

    Usage:
        with run_lock("web-stack"):
            ...

    Raises:
        LockError: If unable to acquire lock
    """
    lock = RunLock(deployment, lock_dir=lock_dir, timeout=timeout)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()
