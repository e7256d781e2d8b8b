"""Tests for intake.lock module"""
import os

import pytest

from intake.errors import AlreadyLocked
from intake.lock import LockGuard, LockHandle


class TestLockGuard:
    """Test suite for the lock marker"""

    @pytest.fixture
    def lock_path(self, temp_dirs):
        _, _, run_dir = temp_dirs
        return os.path.join(run_dir, "hardcode.lock")

    def test_acquire_creates_marker(self, lock_path):
        """Test that acquire creates the marker file and returns a handle"""
        guard = LockGuard(lock_path)

        handle = guard.acquire()

        assert os.path.exists(lock_path)
        assert handle == LockHandle(lock_path)
        assert guard.is_held()

    def test_acquire_fails_when_marker_exists(self, lock_path):
        """Test that a second acquire raises AlreadyLocked"""
        LockGuard(lock_path).acquire()

        with pytest.raises(AlreadyLocked) as excinfo:
            LockGuard(lock_path).acquire()

        assert excinfo.value.lock_path == lock_path
        assert lock_path in str(excinfo.value)

    def test_stale_marker_is_not_cleared(self, lock_path):
        """Test that a leftover marker from a dead process still blocks"""
        with open(lock_path, "w"):
            pass

        guard = LockGuard(lock_path)
        with pytest.raises(AlreadyLocked):
            guard.acquire()
        assert os.path.exists(lock_path)

    def test_release_removes_marker(self, lock_path):
        """Test that release deletes the marker"""
        guard = LockGuard(lock_path)
        handle = guard.acquire()

        guard.release(handle)

        assert not os.path.exists(lock_path)
        assert not guard.is_held()

    def test_release_is_idempotent(self, lock_path):
        """Test that releasing twice, or without a handle, does not raise"""
        guard = LockGuard(lock_path)
        handle = guard.acquire()

        guard.release(handle)
        guard.release(handle)
        guard.release()

        assert not guard.is_held()

    def test_held_releases_on_exception(self, lock_path):
        """Test that the scoped form releases the marker when the body raises"""
        guard = LockGuard(lock_path)

        with pytest.raises(RuntimeError):
            with guard.held():
                assert guard.is_held()
                raise RuntimeError("boom")

        assert not guard.is_held()

    def test_held_does_not_release_foreign_lock(self, lock_path):
        """Test that a failed scoped acquire leaves the owner's marker alone"""
        owner = LockGuard(lock_path)
        owner.acquire()

        with pytest.raises(AlreadyLocked):
            with LockGuard(lock_path).held():
                pass

        assert owner.is_held()
