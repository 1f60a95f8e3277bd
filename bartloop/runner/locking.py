"""
Advisory run lock for bart.

One process at a time may own the run lock. The owner is the only process
allowed to recover stale in_progress tasks. The lock is advisory: nothing
stops another process from editing the task document.

Two implementations share the ProcessLock interface:
- PidFileLock: the lock file holds the owner's PID; liveness is probed
  with signal 0. Racy, but works on any filesystem.
- FlockLock: kernel flock on the lock file; released automatically if the
  owner dies.
"""

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class ProcessLock(Protocol):
    """Single-owner advisory lock."""

    def acquire(self) -> bool:
        """Try to take the lock without blocking. True if now owned by us."""
        ...

    def release(self) -> None:
        """Give up the lock if we own it. Safe to call repeatedly."""
        ...

    def is_held_by_live(self) -> bool:
        """True if some live process (possibly us) holds the lock."""
        ...

    def owner_pid(self) -> Optional[int]:
        ...


def pid_alive(pid: int) -> bool:
    """Probe whether a process exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    return True


def _read_pid(lock_file: Path) -> Optional[int]:
    try:
        content = lock_file.read_text().strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Cannot read lock file {lock_file}: {e}")
        return None
    try:
        return int(content.splitlines()[0]) if content else None
    except ValueError:
        logger.warning(f"Ignoring malformed lock file {lock_file}")
        return None


class PidFileLock:
    """Lock file containing the owner's PID."""

    def __init__(self, lock_file: Path):
        self.lock_file = lock_file
        self._owned = False

    def owner_pid(self) -> Optional[int]:
        return _read_pid(self.lock_file)

    def is_held_by_live(self) -> bool:
        pid = self.owner_pid()
        return pid is not None and pid_alive(pid)

    def acquire(self) -> bool:
        if self._owned:
            return True

        pid = self.owner_pid()
        if pid is not None and pid != os.getpid() and pid_alive(pid):
            logger.info(f"Run lock held by live process {pid}")
            return False

        if pid is not None or self.lock_file.exists():
            logger.info(f"Removing stale run lock from process {pid or 'unknown'}")
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            # O_EXCL so two processes clearing the same stale lock can't both win
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.info("Lost race for run lock")
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")

        self._owned = True
        return True

    def release(self) -> None:
        if not self._owned:
            return
        self._owned = False
        # Only remove the file if it is still ours
        if self.owner_pid() == os.getpid():
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass


class FlockLock:
    """Kernel advisory lock via flock(2).

    The lock file is never deleted: deleting it would let two processes hold
    "exclusive" locks on different inodes with the same path.
    """

    def __init__(self, lock_file: Path):
        self.lock_file = lock_file
        self._fd = None

    def owner_pid(self) -> Optional[int]:
        return _read_pid(self.lock_file)

    def is_held_by_live(self) -> bool:
        if self._fd is not None:
            return True
        if not self.lock_file.exists():
            return False
        with open(self.lock_file, "r") as probe:
            try:
                fcntl.flock(probe, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(probe, fcntl.LOCK_UN)
        return False

    def acquire(self) -> bool:
        if self._fd is not None:
            return True
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_file, "a+")
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fd.close()
            return False
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        self._fd = fd
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            fd.close()
