"""Shared domain models for the Infinity Metrics installer."""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from infinityinstaller.constants import (
    APP_CONTAINER_PRIMARY,
    APP_CONTAINER_SECONDARY,
    DATABASE_RELATIVE_PATH,
    DEFAULT_RETENTION_DAILY_DAYS,
    DEFAULT_RETENTION_MONTHLY_DAYS,
    DEFAULT_RETENTION_WEEKLY_DAYS,
    ENV_FILE_NAME,
    LOCK_FILE_NAME,
    PROXY_CONFIG_FILE_NAME,
)


class ApplicationSlot(str, Enum):
    """One of the two interchangeable application containers."""

    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def container_name(self) -> str:
        if self is ApplicationSlot.PRIMARY:
            return APP_CONTAINER_PRIMARY
        return APP_CONTAINER_SECONDARY

    @property
    def other(self) -> "ApplicationSlot":
        if self is ApplicationSlot.PRIMARY:
            return ApplicationSlot.SECONDARY
        return ApplicationSlot.PRIMARY


class BackupClass(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class BackupFile:
    """A timestamp-named database snapshot found in the backup directory."""

    name: str
    path: str
    backup_class: BackupClass
    created_at: datetime


@dataclass(frozen=True)
class RetentionConfig:
    """Maximum age, in days, kept for each backup class."""

    daily_days: int = DEFAULT_RETENTION_DAILY_DAYS
    weekly_days: int = DEFAULT_RETENTION_WEEKLY_DAYS
    monthly_days: int = DEFAULT_RETENTION_MONTHLY_DAYS

    def max_age(self, backup_class: BackupClass) -> timedelta:
        days = {
            BackupClass.DAILY: self.daily_days,
            BackupClass.WEEKLY: self.weekly_days,
            BackupClass.MONTHLY: self.monthly_days,
        }[backup_class]
        return timedelta(hours=days * 24)


@dataclass(frozen=True)
class ReleaseConfig:
    """Configuration snapshot for one installer run, persisted in the install `.env`."""

    domain: str = ""
    admin_email: str = ""
    license_key: str = ""
    app_image: str = ""
    proxy_image: str = ""
    install_dir: str = ""
    backup_path: str = ""
    private_key: str = ""
    version: str = ""
    installer_url: str = ""

    @property
    def main_db_path(self) -> str:
        return os.path.join(self.install_dir, DATABASE_RELATIVE_PATH)

    @property
    def env_file(self) -> str:
        return os.path.join(self.install_dir, ENV_FILE_NAME)

    @property
    def proxy_config_path(self) -> str:
        return os.path.join(self.install_dir, PROXY_CONFIG_FILE_NAME)

    @property
    def lock_file(self) -> str:
        return os.path.join(self.install_dir, LOCK_FILE_NAME)


@dataclass(frozen=True)
class ReleaseInfo:
    """Latest installer release as described by the release API."""

    version: str
    tag: str
    binary_url: Optional[str] = None
    config_url: Optional[str] = None
