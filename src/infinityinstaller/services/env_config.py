"""Install environment file (`.env`) persistence for the installer."""

import dataclasses
import os
import secrets
from typing import Dict, Optional

from infinityinstaller.constants import (
    BACKUPS_RELATIVE_PATH,
    DEFAULT_APP_IMAGE,
    DEFAULT_INSTALL_DIR,
    DEFAULT_INSTALLER_URL,
    DEFAULT_PROXY_IMAGE,
    DEFAULT_VERSION,
)
from infinityinstaller.errors import ConfigError
from infinityinstaller.models import ReleaseConfig
from infinityinstaller.services.validation import ValidationService

ENV_KEYS = (
    ("INFINITY_METRICS_DOMAIN", "domain"),
    ("INFINITY_METRICS_ADMIN_EMAIL", "admin_email"),
    ("INFINITY_METRICS_LICENSE_KEY", "license_key"),
    ("APP_IMAGE", "app_image"),
    ("CADDY_IMAGE", "proxy_image"),
    ("INSTALL_DIR", "install_dir"),
    ("BACKUP_PATH", "backup_path"),
    ("VERSION", "version"),
    ("INSTALLER_URL", "installer_url"),
    ("INFINITY_METRICS_PRIVATE_KEY", "private_key"),
)


def default_release_config(install_dir: str = DEFAULT_INSTALL_DIR) -> ReleaseConfig:
    return ReleaseConfig(
        app_image=DEFAULT_APP_IMAGE,
        proxy_image=DEFAULT_PROXY_IMAGE,
        install_dir=install_dir,
        backup_path=os.path.join(install_dir, BACKUPS_RELATIVE_PATH),
        version=DEFAULT_VERSION,
        installer_url=DEFAULT_INSTALLER_URL,
    )


def generate_private_key() -> str:
    return secrets.token_hex(16)


class EnvConfig:
    """Holds the run's ReleaseConfig and round-trips it through a flat KEY=VALUE file."""

    def __init__(self, logger, data: Optional[ReleaseConfig] = None, validation_service=None):
        self.logger = logger
        self.data = data or default_release_config()
        self.validation_service = validation_service or ValidationService()

    def get_data(self) -> ReleaseConfig:
        return self.data

    def update(self, **changes) -> ReleaseConfig:
        self.data = dataclasses.replace(self.data, **changes)
        return self.data

    def load_from_file(self, path: str) -> ReleaseConfig:
        self.logger.info("Loading configuration from %s", path)
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                lines = file_obj.readlines()
        except OSError as exc:
            raise ConfigError(f"Failed to open config file {path}: {exc}") from exc

        key_map = dict(ENV_KEYS)
        values: Dict[str, str] = {}
        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            field_name = key_map.get(key.strip())
            if field_name:
                values[field_name] = value.strip()

        self.update(**values)

        if not self.data.private_key:
            private_key = generate_private_key()
            self.update(private_key=private_key)
            try:
                with open(path, "a", encoding="utf-8") as file_obj:
                    file_obj.write(f"INFINITY_METRICS_PRIVATE_KEY={private_key}\n")
                self.logger.info("Added missing INFINITY_METRICS_PRIVATE_KEY to %s", path)
            except OSError as exc:
                self.logger.warning("Could not persist generated private key to %s: %s", path, exc)

        return self.data

    def save_to_file(self, path: str):
        if not self.data.private_key:
            self.update(private_key=generate_private_key())
            self.logger.info("Generated new INFINITY_METRICS_PRIVATE_KEY")

        content = "".join(f"{key}={getattr(self.data, field)}\n" for key, field in ENV_KEYS)
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise ConfigError(f"Failed to save config to {path}: {exc}") from exc

        self.logger.info("Configuration saved to %s", path)

    def validate(self):
        data = self.data
        self.validation_service.validate_domain(data.domain)
        self.validation_service.validate_email(data.admin_email)

        required = (
            ("license key", data.license_key),
            ("app image", data.app_image),
            ("proxy image", data.proxy_image),
            ("install directory", data.install_dir),
            ("backup path", data.backup_path),
            ("private key", data.private_key),
        )
        for label, value in required:
            if not value:
                raise ConfigError(f"{label} is required")
