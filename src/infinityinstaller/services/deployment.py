"""Fresh install and blue-green update of the application containers."""

import time
from typing import Tuple

from infinityinstaller.constants import (
    DEPLOY_BACKOFF_SECONDS,
    HEALTH_CHECK_ATTEMPTS,
    MAX_DEPLOY_ATTEMPTS,
    PROXY_CONTAINER_NAME,
    TRAFFIC_STABILIZATION_SECONDS,
)
from infinityinstaller.errors import DeploymentError, InstallerError
from infinityinstaller.errors_catalog import actionable_error
from infinityinstaller.models import ApplicationSlot, ReleaseConfig


class DeploymentService:
    """Owns the rollout protocol across the proxy and the two application slots.

    The slot that serves traffic when an update starts is never stopped
    until the candidate has passed its health gate and the proxy routes
    exclusively to it. Every failure before that point removes only the
    candidate.
    """

    def __init__(
        self,
        logger,
        console,
        docker_runtime,
        proxy_config,
        database_service,
        filesystem_service,
    ):
        self.logger = logger
        self.console = console
        self.docker_runtime = docker_runtime
        self.proxy_config = proxy_config
        self.database_service = database_service
        self.filesystem_service = filesystem_service

    def deploy(self, config: ReleaseConfig) -> bool:
        """Bring up the proxy and the primary slot. Returns ``False`` when already running."""
        primary = ApplicationSlot.PRIMARY.container_name
        proxy_running = self.docker_runtime.is_running(PROXY_CONTAINER_NAME)

        if proxy_running and self.docker_runtime.is_running(primary):
            self.logger.info(
                "Active installation detected with running containers (%s, %s), skipping deployment",
                PROXY_CONTAINER_NAME,
                primary,
            )
            return False

        self.filesystem_service.ensure_install_layout(config.install_dir)
        self.docker_runtime.ensure_network()

        self.proxy_config.write(config, self.proxy_config.render(config, primary))
        self.docker_runtime.pull_images([config.app_image, config.proxy_image])

        if proxy_running:
            self.docker_runtime.ensure_network_connected(PROXY_CONTAINER_NAME)
        else:
            self.docker_runtime.run_proxy_container(config)

        self.docker_runtime.run_app_container(config, primary)
        return True

    def select_slots(self) -> Tuple[ApplicationSlot, ApplicationSlot]:
        """Return ``(current, candidate)``; the candidate is the slot that is not running."""
        current = ApplicationSlot.PRIMARY
        if self.docker_runtime.is_running(ApplicationSlot.SECONDARY.container_name):
            current = ApplicationSlot.SECONDARY
        return current, current.other

    def update(self, config: ReleaseConfig) -> ApplicationSlot:
        if not self.docker_runtime.is_running(PROXY_CONTAINER_NAME):
            raise DeploymentError(actionable_error("proxy_not_running", container=PROXY_CONTAINER_NAME))

        self.docker_runtime.ensure_network()
        self.docker_runtime.pull_images([config.app_image, config.proxy_image])

        current, candidate = self.select_slots()
        current_name = current.container_name
        candidate_name = candidate.container_name
        current_running = self.docker_runtime.is_running(current_name)
        self.logger.info("Updating: current slot %s, candidate slot %s", current_name, candidate_name)

        self._backup_before_update(config)
        self._deploy_candidate(config, candidate_name)

        try:
            self.docker_runtime.ensure_network_connected(candidate_name)
        except DeploymentError as exc:
            self.docker_runtime.stop_and_remove(candidate_name)
            raise DeploymentError(f"Failed to ensure network for {candidate_name}: {exc}") from exc

        self.console.print(f"[blue]Checking {candidate_name} health...[/blue]")
        if not self.docker_runtime.check_health(candidate_name):
            self.docker_runtime.stop_and_remove(candidate_name)
            raise DeploymentError(
                f"New container {candidate_name} unhealthy after {HEALTH_CHECK_ATTEMPTS} attempts"
            )

        try:
            self._shift_traffic(config, current_name, candidate_name, current_running)
        except InstallerError as exc:
            if current_running:
                self._restore_proxy(config, current_name)
            self.docker_runtime.stop_and_remove(candidate_name)
            raise DeploymentError(f"Traffic shift to {candidate_name} failed: {exc}") from exc

        self.docker_runtime.stop_and_remove(current_name)
        self.docker_runtime.prune_images()
        self.console.print(f"[green]Update complete, {candidate_name} is serving traffic.[/green]")
        return candidate

    def _backup_before_update(self, config: ReleaseConfig):
        self.console.print("[blue]Backing up database...[/blue]")
        try:
            self.database_service.backup_database(config.main_db_path, config.backup_path)
        except InstallerError as exc:
            self.logger.warning("Proceeding without backup: %s", exc)
            self.console.print("[yellow]Warning:[/yellow] Database backup failed, continuing update.")

    def _deploy_candidate(self, config: ReleaseConfig, name: str):
        for attempt in range(1, MAX_DEPLOY_ATTEMPTS + 1):
            try:
                self.docker_runtime.run_app_container(config, name)
                return
            except DeploymentError as exc:
                self.docker_runtime.stop_and_remove(name)
                if attempt == MAX_DEPLOY_ATTEMPTS:
                    raise DeploymentError(
                        f"Deploy {name} failed after {MAX_DEPLOY_ATTEMPTS} attempts: {exc}"
                    ) from exc

                delay = attempt * DEPLOY_BACKOFF_SECONDS
                self.logger.warning(
                    "Deploy %s failed, retrying in %.0fs (%s/%s): %s",
                    name,
                    delay,
                    attempt,
                    MAX_DEPLOY_ATTEMPTS,
                    exc,
                )
                time.sleep(delay)

    def _shift_traffic(self, config: ReleaseConfig, current_name: str, candidate_name: str, current_running: bool):
        if current_running:
            self.console.print("[blue]Reloading proxy with both upstreams...[/blue]")
            self.proxy_config.apply(config, current_name, candidate_name)
            time.sleep(TRAFFIC_STABILIZATION_SECONDS)
        else:
            self.logger.info("%s is not running, switching proxy directly to %s", current_name, candidate_name)

        self.console.print(f"[blue]Reloading proxy with {candidate_name} only...[/blue]")
        self.proxy_config.apply(config, candidate_name)

    def _restore_proxy(self, config: ReleaseConfig, current_name: str):
        try:
            self.proxy_config.apply(config, current_name)
        except InstallerError as exc:
            self.logger.error("Could not route proxy back to %s: %s", current_name, exc)

    def verify_installation(self, config: ReleaseConfig):
        expected = [PROXY_CONTAINER_NAME, ApplicationSlot.PRIMARY.container_name]
        missing = [name for name in expected if not self.docker_runtime.is_running(name)]
        if missing:
            raise DeploymentError(actionable_error("installation_not_running", containers=", ".join(missing)))
        self.console.print(f"[green]Installation verified, {config.domain} is being served.[/green]")
