"""Admin account management inside the running application container."""

from typing import Optional

from infinityinstaller.constants import ADMIN_CLI_PATH, MIN_ADMIN_PASSWORD_LENGTH
from infinityinstaller.errors import ConfigError, DeploymentError, InstallerError
from infinityinstaller.errors_catalog import actionable_error
from infinityinstaller.models import ApplicationSlot


class AdminService:
    """Runs the application's admin CLI in whichever slot is serving."""

    def __init__(self, logger, console, run_cmd, docker_runtime, validation_service):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.docker_runtime = docker_runtime
        self.validation_service = validation_service

    def running_container(self) -> str:
        # After an update the secondary slot may be the only one serving.
        for slot in (ApplicationSlot.SECONDARY, ApplicationSlot.PRIMARY):
            if self.docker_runtime.is_running(slot.container_name):
                return slot.container_name

        names = ", ".join(slot.container_name for slot in ApplicationSlot)
        raise DeploymentError(actionable_error("app_not_running", containers=names))

    def _validate_credentials(self, email: str, password: Optional[str]):
        self.validation_service.validate_email(email)
        if not password or len(password) < MIN_ADMIN_PASSWORD_LENGTH:
            raise ConfigError(f"Password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters long")

    def _run_admin_cli(self, action: str, email: str, password: str):
        container = self.running_container()
        self.logger.debug("Running %s %s for %s in %s", ADMIN_CLI_PATH, action, email, container)
        try:
            self.run_cmd(
                ["docker", "exec", container, ADMIN_CLI_PATH, action, email, password],
                capture_output=True,
            )
        except InstallerError as exc:
            # The command line carries the password; keep it out of the message.
            raise DeploymentError(f"{ADMIN_CLI_PATH} {action} failed in {container}") from exc

    def create_admin_user(self, email: str, password: str):
        email = (email or "").strip()
        self._validate_credentials(email, password)
        try:
            self._run_admin_cli("create-admin-user", email, password)
        except DeploymentError as exc:
            raise DeploymentError(f"Failed to create admin user: {exc}") from exc
        self.console.print(f"[green]Admin user {email} created.[/green]")

    def change_admin_password(self, email: str, new_password: str):
        email = (email or "").strip()
        self._validate_credentials(email, new_password)
        self.logger.info("Changing admin password for %s", email)
        try:
            self._run_admin_cli("change-admin-password", email, new_password)
        except DeploymentError as exc:
            raise DeploymentError(f"Failed to change admin password: {exc}") from exc
        self.console.print(f"[green]Password changed for {email}.[/green]")
