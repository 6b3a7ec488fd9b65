import os

import pytest

from infinityinstaller.errors import LockError
from infinityinstaller.services.locking import InstallLock


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def test_lock_records_pid_and_keeps_file_on_release(tmp_path):
    lock_path = tmp_path / ".installer.lock"
    lock = InstallLock(str(lock_path), DummyLogger())

    with lock:
        assert lock.held is True
        assert lock_path.read_text() == str(os.getpid())

    assert lock.held is False
    assert lock_path.exists()


def test_second_lock_on_same_dir_is_refused(tmp_path):
    lock_path = str(tmp_path / ".installer.lock")
    first = InstallLock(lock_path, DummyLogger())
    second = InstallLock(lock_path, DummyLogger())

    with first:
        with pytest.raises(LockError, match=f"held by PID {os.getpid()}"):
            second.acquire()
        assert second.held is False


def test_lock_can_be_taken_again_after_release(tmp_path):
    lock_path = str(tmp_path / ".installer.lock")
    first = InstallLock(lock_path, DummyLogger())
    first.acquire()
    first.release()

    second = InstallLock(lock_path, DummyLogger())
    with second:
        assert second.held is True


def test_release_is_idempotent(tmp_path):
    lock = InstallLock(str(tmp_path / "nested" / ".installer.lock"), DummyLogger())
    lock.acquire()
    lock.acquire()
    lock.release()
    lock.release()

    assert lock.held is False
