import os
import subprocess
from datetime import datetime, timedelta

import pytest

import infinityinstaller.services.database as database_module
from infinityinstaller.errors import BackupError, InstallerError
from infinityinstaller.models import BackupClass, RetentionConfig
from infinityinstaller.services.database import DatabaseService, backup_file_name, determine_backup_class


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def __init__(self):
        self.printed = []

    def print(self, *args, **_kwargs):
        self.printed.extend(args)


class FakeSqlite:
    """Stands in for the sqlite3 CLI: `.backup` copies the file, integrity check answers `result`."""

    def __init__(self, integrity_result="ok", backup_content=b"SQLite format 3\x00data"):
        self.integrity_result = integrity_result
        self.backup_content = backup_content
        self.calls = []

    def __call__(self, cmd, check=True, capture_output=False, input_text=None):
        self.calls.append(cmd)
        if cmd[2].startswith(".backup"):
            target = cmd[2][len(".backup '") : -1].replace("''", "'")
            with open(target, "wb") as file_obj:
                file_obj.write(self.backup_content)
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout=f"{self.integrity_result}\n", stderr="")


def _service(run_cmd=None, now=datetime(2024, 3, 13, 10, 30, 0), **kwargs):
    return DatabaseService(
        logger=DummyLogger(),
        console=DummyConsole(),
        run_cmd=run_cmd or FakeSqlite(),
        clock=lambda: now,
        **kwargs,
    )


def _touch_backup(directory, created_at, content=b"data"):
    path = directory / backup_file_name(created_at)
    path.write_bytes(content)
    return path


@pytest.mark.parametrize(
    "created_at",
    [datetime(2024, 9, 1), datetime(2024, 3, 1, 23, 59), datetime(2024, 12, 1, 0, 0, 1)],
)
def test_first_of_month_is_monthly_regardless_of_weekday(created_at):
    assert determine_backup_class(created_at) is BackupClass.MONTHLY


def test_sunday_not_first_is_weekly():
    assert determine_backup_class(datetime(2024, 3, 10, 8, 0)) is BackupClass.WEEKLY


def test_other_days_are_daily():
    assert determine_backup_class(datetime(2024, 3, 12, 8, 0)) is BackupClass.DAILY


def test_backup_database_creates_validated_timestamped_file(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")
    backup_dir = tmp_path / "backups"
    runner = FakeSqlite()

    result = _service(runner).backup_database(str(db_path), str(backup_dir))

    assert result == str(backup_dir / "backup_20240313_103000.db")
    assert os.path.getsize(result) > 0
    assert runner.calls[1] == ["sqlite3", result, "PRAGMA integrity_check;"]


def test_backup_database_quotes_apostrophe_in_target_path(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")
    backup_dir = tmp_path / "o'brien" / "backups"
    runner = FakeSqlite()

    result = _service(runner).backup_database(str(db_path), str(backup_dir))

    escaped = str(backup_dir / "backup_20240313_103000.db").replace("'", "''")
    assert runner.calls[0] == ["sqlite3", str(db_path), f".backup '{escaped}'"]
    assert os.path.exists(result)


def test_backup_database_missing_source_creates_nothing(tmp_path):
    backup_dir = tmp_path / "backups"

    with pytest.raises(BackupError, match="Database file not found"):
        _service().backup_database(str(tmp_path / "missing.db"), str(backup_dir))

    assert not backup_dir.exists()


def test_backup_database_removes_backup_that_fails_integrity(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")
    backup_dir = tmp_path / "backups"

    with pytest.raises(BackupError, match="Backup validation failed"):
        _service(FakeSqlite(integrity_result="*** in database main ***")).backup_database(
            str(db_path), str(backup_dir)
        )

    assert list(backup_dir.iterdir()) == []


def test_backup_database_removes_empty_backup(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")
    backup_dir = tmp_path / "backups"

    with pytest.raises(BackupError, match="Backup file is empty"):
        _service(FakeSqlite(backup_content=b"")).backup_database(str(db_path), str(backup_dir))

    assert list(backup_dir.iterdir()) == []


def test_backup_database_wraps_sqlite_failure(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")

    def failing_run_cmd(cmd, check=True, capture_output=False, input_text=None):
        raise InstallerError("Command failed (1): sqlite3")

    with pytest.raises(BackupError, match="sqlite3 backup failed"):
        _service(failing_run_cmd).backup_database(str(db_path), str(tmp_path / "backups"))


def test_backup_database_runs_retention_sweep(tmp_path):
    db_path = tmp_path / "main.db"
    db_path.write_bytes(b"SQLite format 3\x00")
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    stale = _touch_backup(backup_dir, datetime(2024, 3, 2, 10, 0))

    _service().backup_database(str(db_path), str(backup_dir))

    assert not stale.exists()


def test_validate_backup_rejects_empty_file(tmp_path):
    empty = tmp_path / "backup_20240313_103000.db"
    empty.write_bytes(b"")

    with pytest.raises(BackupError, match="Backup file is empty"):
        _service().validate_backup(str(empty))


def test_validate_backup_requires_exact_ok_sentinel(tmp_path):
    backup = tmp_path / "backup_20240313_103000.db"
    backup.write_bytes(b"data")

    with pytest.raises(BackupError, match="integrity issues"):
        _service(FakeSqlite(integrity_result="ok, with warnings")).validate_backup(str(backup))


def test_validate_backup_reports_failed_integrity_command(tmp_path):
    backup = tmp_path / "backup_20240313_103000.db"
    backup.write_bytes(b"data")

    def failing_check(cmd, check=True, capture_output=False, input_text=None):
        return subprocess.CompletedProcess(cmd, 26, stdout="", stderr="file is not a database")

    with pytest.raises(BackupError, match="may be corrupted"):
        _service(failing_check).validate_backup(str(backup))


def test_list_backups_sorted_newest_first_and_skips_bad_names(tmp_path):
    _touch_backup(tmp_path, datetime(2024, 3, 10, 8, 0))
    _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0))
    _touch_backup(tmp_path, datetime(2024, 3, 1, 8, 0))
    (tmp_path / "backup_notatime.db").write_bytes(b"data")
    (tmp_path / "other.db").write_bytes(b"data")

    backups = _service().list_backups(str(tmp_path))

    assert [backup.name for backup in backups] == [
        "backup_20240312_080000.db",
        "backup_20240310_080000.db",
        "backup_20240301_080000.db",
    ]
    assert [backup.backup_class for backup in backups] == [
        BackupClass.DAILY,
        BackupClass.WEEKLY,
        BackupClass.MONTHLY,
    ]


def test_retention_sweep_applies_daily_window(tmp_path):
    now = datetime(2024, 3, 13, 12, 0)
    young = _touch_backup(tmp_path, now - timedelta(days=2))
    old = _touch_backup(tmp_path, now - timedelta(days=5))
    service = _service(now=now, retention=RetentionConfig(daily_days=3, weekly_days=14, monthly_days=90))

    removed = service.cleanup_old_backups(str(tmp_path))

    assert young.exists()
    assert not old.exists()
    assert removed == [str(old)]


def test_retention_classes_are_independent(tmp_path):
    now = datetime(2024, 3, 13, 12, 0)
    monthly = _touch_backup(tmp_path, datetime(2024, 2, 1, 12, 0))
    daily = _touch_backup(tmp_path, datetime(2024, 2, 6, 12, 0))
    service = _service(now=now)

    service.cleanup_old_backups(str(tmp_path))

    assert monthly.exists()
    assert not daily.exists()


def test_set_retention_config_applies_to_next_sweep(tmp_path):
    now = datetime(2024, 3, 13, 12, 0)
    backup = _touch_backup(tmp_path, now - timedelta(days=2))
    service = _service(now=now)

    assert service.cleanup_old_backups(str(tmp_path)) == []

    service.set_retention_config(RetentionConfig(daily_days=1, weekly_days=14, monthly_days=90))

    assert service.cleanup_old_backups(str(tmp_path)) == [str(backup)]
    assert not backup.exists()


def test_retention_sweep_continues_after_delete_failure(tmp_path, monkeypatch):
    now = datetime(2024, 3, 13, 12, 0)
    first = _touch_backup(tmp_path, now - timedelta(days=9))
    second = _touch_backup(tmp_path, now - timedelta(days=8, hours=1))
    original_remove = os.remove

    def flaky_remove(path):
        if path == str(first):
            raise OSError("permission denied")
        original_remove(path)

    monkeypatch.setattr(database_module.os, "remove", flaky_remove)

    removed = _service(now=now).cleanup_old_backups(str(tmp_path))

    assert removed == [str(second)]
    assert first.exists()


def test_prompt_selection_returns_chosen_path(tmp_path):
    _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0))
    older = _touch_backup(tmp_path, datetime(2024, 3, 11, 8, 0))
    service = _service(prompt_func=lambda *_args, **_kwargs: 2)

    selected = service.prompt_selection(service.list_backups(str(tmp_path)))

    assert selected == str(older)


def test_prompt_selection_rejects_out_of_range_choice(tmp_path):
    _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0))
    service = _service(prompt_func=lambda *_args, **_kwargs: 5)

    with pytest.raises(BackupError, match="Invalid selection"):
        service.prompt_selection(service.list_backups(str(tmp_path)))


def test_restore_moves_current_database_aside(tmp_path):
    main_db = tmp_path / "main.db"
    main_db.write_bytes(b"current")
    backup = _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0), content=b"restored")

    _service().restore_database(str(main_db), str(backup))

    assert main_db.read_bytes() == b"restored"
    assert (tmp_path / "main.db.bak.20240313103000").read_bytes() == b"current"
    assert not backup.exists()


def test_restore_rolls_back_when_final_rename_fails(tmp_path, monkeypatch):
    main_db = tmp_path / "main.db"
    main_db.write_bytes(b"current")
    backup = _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0), content=b"restored")
    original_replace = os.replace

    def failing_replace(src, dst):
        if src == str(backup):
            raise OSError("cross-device link")
        original_replace(src, dst)

    monkeypatch.setattr(database_module.os, "replace", failing_replace)

    with pytest.raises(BackupError, match="Failed to restore backup"):
        _service().restore_database(str(main_db), str(backup))

    assert main_db.read_bytes() == b"current"
    assert not (tmp_path / "main.db.bak.20240313103000").exists()


def test_restore_reports_failed_rollback(tmp_path, monkeypatch):
    main_db = tmp_path / "main.db"
    main_db.write_bytes(b"current")
    backup = _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0), content=b"restored")
    original_replace = os.replace

    def failing_replace(src, dst):
        if src != str(main_db):
            raise OSError("disk gone")
        original_replace(src, dst)

    monkeypatch.setattr(database_module.os, "replace", failing_replace)

    with pytest.raises(BackupError, match="rollback from .* also failed"):
        _service().restore_database(str(main_db), str(backup))


def test_restore_validates_backup_before_touching_database(tmp_path):
    main_db = tmp_path / "main.db"
    main_db.write_bytes(b"current")
    backup = _touch_backup(tmp_path, datetime(2024, 3, 12, 8, 0), content=b"")

    with pytest.raises(BackupError, match="Validation failed"):
        _service().restore_database(str(main_db), str(backup))

    assert main_db.read_bytes() == b"current"
