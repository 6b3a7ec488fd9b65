"""Host maintenance: installed binary and the nightly update cron entry."""

import os
import shutil
import sys
from typing import Optional

from infinityinstaller.constants import BINARY_INSTALL_PATH, CRON_FILE, CRON_SCHEDULE, FILE_MODE, SCRIPT_MODE
from infinityinstaller.errors import DeploymentError


def is_test_environment() -> bool:
    return os.environ.get("ENV", "") == "test"


def current_binary_path() -> Optional[str]:
    """Path of the running single-file binary, or ``None`` when run from a Python install."""
    if getattr(sys, "frozen", False):
        return os.path.abspath(sys.executable)
    return None


class MaintenanceService:
    def __init__(
        self,
        logger,
        console,
        filesystem_service,
        cron_file: str = CRON_FILE,
        binary_path: str = BINARY_INSTALL_PATH,
        schedule: str = CRON_SCHEDULE,
    ):
        self.logger = logger
        self.console = console
        self.filesystem_service = filesystem_service
        self.cron_file = cron_file
        self.binary_path = binary_path
        self.schedule = schedule

    def render_cron_entry(self, install_dir: str) -> str:
        logs_dir = os.path.join(install_dir, "logs")
        return (
            "# Infinity Metrics automated updates\n"
            "SHELL=/bin/bash\n"
            "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin\n"
            f"INSTALL_DIR={install_dir}\n"
            f"{self.schedule} root cd {install_dir} && {self.binary_path} update "
            f"> {logs_dir}/updater.log 2>&1\n"
        )

    def setup_cron_job(self, install_dir: str) -> bool:
        if is_test_environment():
            self.logger.info("Skipping cron setup in test environment")
            return False

        self.logger.info("Setting up cron job...")
        try:
            os.makedirs(os.path.join(install_dir, "logs"), exist_ok=True)
        except OSError as exc:
            self.logger.warning("Failed to create logs directory: %s", exc)

        try:
            self.filesystem_service.write_text(self.cron_file, self.render_cron_entry(install_dir), FILE_MODE)
        except DeploymentError as exc:
            raise DeploymentError(f"Failed to setup cron: {exc}") from exc

        self.console.print("[green]Automatic updates scheduled for 3:00 AM daily.[/green]")
        return True

    def install_binary(self, source_path: Optional[str]) -> bool:
        """Copy the running binary to the system path. Failures are logged, never raised."""
        if is_test_environment():
            self.logger.info("Skipping binary installation in test environment")
            return False

        if not source_path:
            self.logger.info("Not running as a standalone binary, skipping binary installation")
            return False

        if os.path.abspath(source_path) == os.path.abspath(self.binary_path):
            self.logger.debug("Binary already installed at %s", self.binary_path)
            return False

        self.logger.info("Installing binary from %s to %s", source_path, self.binary_path)
        temp_path = f"{self.binary_path}.new"
        try:
            os.makedirs(os.path.dirname(self.binary_path) or ".", exist_ok=True)
            shutil.copyfile(source_path, temp_path)
            os.chmod(temp_path, SCRIPT_MODE)
            os.replace(temp_path, self.binary_path)
        except OSError as exc:
            self.logger.warning("Failed to install binary for updates: %s", exc)
            if os.path.exists(temp_path):
                os.remove(temp_path)
            return False

        self.console.print(f"[green]Binary installed at {self.binary_path}.[/green]")
        return True
