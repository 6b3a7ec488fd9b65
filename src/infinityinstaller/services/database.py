"""SQLite backup, retention and restore services for the installer."""

import os
from datetime import datetime
from typing import Callable, List, Optional

import click
from rich.table import Table

from infinityinstaller.constants import (
    BACKUP_PREFIX,
    BACKUP_SUFFIX,
    BACKUP_TIMESTAMP_FORMAT,
    DIR_MODE,
    INTEGRITY_OK,
    SAFETY_COPY_TIMESTAMP_FORMAT,
)
from infinityinstaller.errors import BackupError, InstallerError
from infinityinstaller.models import BackupClass, BackupFile, RetentionConfig


def determine_backup_class(created_at: datetime) -> BackupClass:
    """Classify a backup by its timestamp: the 1st of the month wins over Sunday."""
    if created_at.day == 1:
        return BackupClass.MONTHLY
    if created_at.weekday() == 6:
        return BackupClass.WEEKLY
    return BackupClass.DAILY


def backup_file_name(created_at: datetime) -> str:
    return f"{BACKUP_PREFIX}{created_at.strftime(BACKUP_TIMESTAMP_FORMAT)}{BACKUP_SUFFIX}"


class DatabaseService:
    """Creates, validates, lists, prunes and restores snapshots of the application database."""

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        retention: Optional[RetentionConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        prompt_func: Callable = click.prompt,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.retention = retention or RetentionConfig()
        self.clock = clock or datetime.now
        self.prompt_func = prompt_func

    def check_available(self):
        result = self.run_cmd(["sqlite3", "--version"], capture_output=True)
        self.logger.debug("SQLite version: %s", (result.stdout or "").strip())

    def set_retention_config(self, retention: RetentionConfig):
        self.retention = retention
        self.logger.info(
            "Updated backup retention config: daily=%s days, weekly=%s days, monthly=%s days",
            retention.daily_days,
            retention.weekly_days,
            retention.monthly_days,
        )

    def backup_database(self, db_path: str, backup_dir: str) -> str:
        """Create a validated hot backup of *db_path* inside *backup_dir*.

        The returned file is guaranteed to exist, be non-empty and pass
        ``PRAGMA integrity_check``. Any failed post-condition removes the file
        before raising ``BackupError``. A retention sweep runs after success;
        sweep failures are only logged.
        """
        if not os.path.isfile(db_path):
            raise BackupError(f"Database file not found: {db_path}")

        try:
            os.makedirs(backup_dir, mode=DIR_MODE, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Failed to create backup directory {backup_dir}: {exc}") from exc

        backup_path = os.path.join(backup_dir, backup_file_name(self.clock()))
        self.logger.info("Creating backup of %s", db_path)

        try:
            quoted = backup_path.replace("'", "''")
            self.run_cmd(["sqlite3", db_path, f".backup '{quoted}'"], capture_output=True)
        except InstallerError as exc:
            self._discard(backup_path)
            raise BackupError(f"sqlite3 backup failed: {exc}") from exc

        if not os.path.exists(backup_path):
            raise BackupError(f"Backup file was not created: {backup_path}")

        try:
            self.validate_backup(backup_path)
        except BackupError as exc:
            self._discard(backup_path)
            raise BackupError(f"Backup validation failed: {exc}") from exc

        size = os.path.getsize(backup_path)
        self.console.print(f"[green]Database backup created at {backup_path} ({size} bytes).[/green]")

        try:
            self.cleanup_old_backups(backup_dir)
        except (BackupError, OSError) as exc:
            self.logger.warning("Failed to clean up old backups: %s", exc)

        return backup_path

    def _discard(self, path: str):
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as exc:
            self.logger.warning("Could not remove invalid backup %s: %s", path, exc)

    def validate_backup(self, backup_path: str):
        try:
            size = os.path.getsize(backup_path)
        except OSError as exc:
            raise BackupError(f"Cannot access backup {backup_path}: {exc}") from exc

        if size == 0:
            raise BackupError("Backup file is empty")

        result = self.run_cmd(
            ["sqlite3", backup_path, "PRAGMA integrity_check;"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            self.logger.warning("SQLite integrity check failed: %s", (result.stderr or "").strip())
            raise BackupError(f"Backup may be corrupted: integrity check exited with {result.returncode}")

        output = (result.stdout or "").strip()
        if output != INTEGRITY_OK:
            self.logger.warning("SQLite integrity check returned issues: %s", output)
            raise BackupError("Backup integrity issues detected")

        self.logger.debug("Backup file %s validated successfully", backup_path)

    def list_backups(self, backup_dir: str) -> List[BackupFile]:
        try:
            names = os.listdir(backup_dir)
        except OSError as exc:
            raise BackupError(f"Failed to read backup directory {backup_dir}: {exc}") from exc

        backups = []
        for name in names:
            path = os.path.join(backup_dir, name)
            if not (name.startswith(BACKUP_PREFIX) and name.endswith(BACKUP_SUFFIX)):
                continue
            if not os.path.isfile(path):
                continue

            stamp = name[len(BACKUP_PREFIX) : -len(BACKUP_SUFFIX)]
            try:
                created_at = datetime.strptime(stamp, BACKUP_TIMESTAMP_FORMAT)
            except ValueError:
                self.logger.warning("Skipping backup with invalid timestamp: %s", name)
                continue

            backups.append(
                BackupFile(
                    name=name,
                    path=path,
                    backup_class=determine_backup_class(created_at),
                    created_at=created_at,
                )
            )

        backups.sort(key=lambda backup: backup.created_at, reverse=True)
        return backups

    def cleanup_old_backups(self, backup_dir: str) -> List[str]:
        now = self.clock()
        removed = []
        for backup in self.list_backups(backup_dir):
            age = now - backup.created_at
            if age <= self.retention.max_age(backup.backup_class):
                continue

            self.logger.info(
                "Removing old %s backup: %s (age: %s)",
                backup.backup_class.value,
                backup.name,
                age,
            )
            try:
                os.remove(backup.path)
            except OSError as exc:
                self.logger.warning("Failed to remove old backup %s: %s", backup.name, exc)
                continue
            removed.append(backup.path)
        return removed

    def render_backups_table(self, backups: List[BackupFile]) -> Table:
        table = Table(title="Available backups")
        table.add_column("#", justify="right")
        table.add_column("Name")
        table.add_column("Class")
        table.add_column("Created")
        table.add_column("Size", justify="right")
        for index, backup in enumerate(backups, start=1):
            try:
                size = f"{os.path.getsize(backup.path)} bytes"
            except OSError:
                size = "?"
            table.add_row(
                str(index),
                backup.name,
                backup.backup_class.value,
                backup.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                size,
            )
        return table

    def prompt_selection(self, backups: List[BackupFile]) -> str:
        if not backups:
            raise BackupError("No backups available")

        self.console.print(self.render_backups_table(backups))
        choice = self.prompt_func(
            f"Enter the number of the backup to restore (1-{len(backups)})",
            type=int,
        )
        if choice < 1 or choice > len(backups):
            raise BackupError(f"Invalid selection: must be a number between 1 and {len(backups)}")
        return backups[choice - 1].path

    def restore_database(self, main_db_path: str, backup_path: str):
        """Swap *backup_path* into *main_db_path*, keeping the old file as a safety copy."""
        try:
            self.validate_backup(backup_path)
        except BackupError as exc:
            raise BackupError(f"Validation failed: {exc}") from exc

        safety_copy = None
        if os.path.exists(main_db_path):
            safety_copy = f"{main_db_path}.bak.{self.clock().strftime(SAFETY_COPY_TIMESTAMP_FORMAT)}"
            self.logger.info("Backing up current database to %s", safety_copy)
            try:
                os.replace(main_db_path, safety_copy)
            except OSError as exc:
                raise BackupError(f"Failed to move current database aside: {exc}") from exc

        self.logger.info("Restoring %s to %s", backup_path, main_db_path)
        try:
            os.replace(backup_path, main_db_path)
        except OSError as exc:
            if safety_copy is None:
                raise BackupError(f"Failed to restore backup: {exc}") from exc
            try:
                os.replace(safety_copy, main_db_path)
            except OSError as rollback_exc:
                self.logger.error("Rollback failed: %s", rollback_exc)
                raise BackupError(
                    f"Failed to restore backup: {exc}; rollback from {safety_copy} also failed: {rollback_exc}"
                ) from exc
            raise BackupError(f"Failed to restore backup: {exc}") from exc

        self.console.print(f"[green]Database restored successfully from {backup_path}.[/green]")

