"""Tests for the advisory run lock."""

import os
from unittest.mock import patch

from bartloop.runner.locking import FlockLock, PidFileLock, pid_alive


class TestPidAlive:

    def test_self_is_alive(self):
        assert pid_alive(os.getpid())

    def test_non_positive(self):
        assert not pid_alive(0)
        assert not pid_alive(-5)


class TestPidFileLock:
    """Tests for PidFileLock."""

    def test_acquire_writes_pid(self, tmp_path):
        lock_file = tmp_path / ".locks" / "run.lock"
        lock = PidFileLock(lock_file)
        assert lock.acquire()
        assert lock_file.read_text().strip() == str(os.getpid())
        assert lock.owner_pid() == os.getpid()
        assert lock.is_held_by_live()

    def test_live_owner_blocks(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock_file.write_text(f"{os.getppid()}\n")
        lock = PidFileLock(lock_file)
        assert not lock.acquire()
        assert lock_file.read_text().strip() == str(os.getppid())

    @patch("bartloop.runner.locking.pid_alive", return_value=False)
    def test_stale_lock_taken_over(self, mock_alive, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock_file.write_text("424242\n")
        lock = PidFileLock(lock_file)
        assert lock.acquire()
        assert lock.owner_pid() == os.getpid()

    def test_malformed_lock_file_replaced(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock_file.write_text("garbage")
        lock = PidFileLock(lock_file)
        assert lock.owner_pid() is None
        assert lock.acquire()
        assert lock.owner_pid() == os.getpid()

    def test_release_removes_file(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock = PidFileLock(lock_file)
        lock.acquire()
        lock.release()
        assert not lock_file.exists()
        lock.release()

    def test_release_keeps_foreign_lock(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock = PidFileLock(lock_file)
        lock.acquire()
        lock_file.write_text("424242\n")
        lock.release()
        assert lock_file.exists()

    def test_release_without_acquire(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        lock_file.write_text(f"{os.getppid()}\n")
        PidFileLock(lock_file).release()
        assert lock_file.exists()


class TestFlockLock:
    """Tests for FlockLock."""

    def test_exclusive(self, tmp_path):
        lock_file = tmp_path / "run.lock"
        first, second = FlockLock(lock_file), FlockLock(lock_file)
        assert first.acquire()
        assert not second.acquire()
        assert second.is_held_by_live()
        assert second.owner_pid() == os.getpid()

        first.release()
        assert not second.is_held_by_live()
        assert second.acquire()
        second.release()
        assert lock_file.exists()

    def test_not_held_when_missing(self, tmp_path):
        assert not FlockLock(tmp_path / "run.lock").is_held_by_live()
