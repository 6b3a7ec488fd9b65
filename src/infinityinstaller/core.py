import logging
import os
from typing import Callable, Optional

import click
import requests
from rich.console import Console

from . import __version__
from .constants import DEFAULT_INSTALL_DIR, ENV_FILE_NAME
from .errors import BackupError, ConfigError, DeploymentError, InstallerError, ReleaseError
from .errors_catalog import actionable_error
from .models import ApplicationSlot, ReleaseInfo, RetentionConfig
from .services.admin import AdminService
from .services.command_runner import CommandRunner
from .services.database import DatabaseService
from .services.deployment import DeploymentService
from .services.docker_runtime import DockerRuntimeService
from .services.env_config import EnvConfig, default_release_config, generate_private_key
from .services.filesystem import FileSystemService
from .services.image_cache import ImageDigestCache
from .services.locking import InstallLock
from .services.maintenance import MaintenanceService, current_binary_path
from .services.proxy_config import ProxyConfigService
from .services.release import ReleaseService, detect_architecture, machine_architecture
from .services.requirements import RequirementsService
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("infinityinstaller")


class InfinityInstaller:
    def __init__(
        self,
        install_dir: str = DEFAULT_INSTALL_DIR,
        app_image: Optional[str] = None,
        proxy_image: Optional[str] = None,
        retention: Optional[RetentionConfig] = None,
        allow_insecure_http: bool = False,
        confirm_func: Callable = click.confirm,
    ):
        self.install_dir = os.path.abspath(install_dir)
        self.app_image = app_image
        self.proxy_image = proxy_image
        self.confirm_func = confirm_func
        self.env_file = os.path.join(self.install_dir, ENV_FILE_NAME)

        self.command_runner = CommandRunner(logger=logger)
        run_cmd = self.command_runner.run

        self.validation_service = ValidationService(allow_insecure_http=allow_insecure_http)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.env_config = EnvConfig(
            logger=logger,
            data=default_release_config(self.install_dir),
            validation_service=self.validation_service,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            run_cmd=run_cmd,
            digest_cache=ImageDigestCache(),
        )
        self.proxy_config_service = ProxyConfigService(
            logger=logger,
            console=console,
            run_cmd=run_cmd,
            filesystem_service=self.filesystem_service,
        )
        self.database_service = DatabaseService(
            logger=logger,
            console=console,
            run_cmd=run_cmd,
            retention=retention,
        )
        self.deployment_service = DeploymentService(
            logger=logger,
            console=console,
            docker_runtime=self.docker_runtime_service,
            proxy_config=self.proxy_config_service,
            database_service=self.database_service,
            filesystem_service=self.filesystem_service,
        )
        self.release_service = ReleaseService(
            logger=logger,
            console=console,
            validation_service=self.validation_service,
            requests_module=requests,
        )
        self.maintenance_service = MaintenanceService(
            logger=logger,
            console=console,
            filesystem_service=self.filesystem_service,
        )
        self.requirements_service = RequirementsService(logger=logger, console=console)
        self.admin_service = AdminService(
            logger=logger,
            console=console,
            run_cmd=run_cmd,
            docker_runtime=self.docker_runtime_service,
            validation_service=self.validation_service,
        )

    def _lock(self) -> InstallLock:
        return InstallLock(self.env_config.get_data().lock_file, logger)

    def _execute(self, action: Callable[[], None]) -> int:
        try:
            action()
            return 0
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except InstallerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            return 1

    def _apply_release(self, release: ReleaseInfo):
        changes = {"version": release.version}
        if release.binary_url:
            changes["installer_url"] = release.binary_url

        if release.config_url:
            try:
                images = self.release_service.fetch_release_images(release.config_url)
            except ReleaseError as exc:
                logger.warning("Failed to fetch release config from %s: %s", release.config_url, exc)
            else:
                if "app_image" in images:
                    changes["app_image"] = images["app_image"]
                if "caddy_image" in images:
                    changes["proxy_image"] = images["caddy_image"]
        else:
            logger.warning("config.json not found in latest release assets")

        self.env_config.update(**changes)
        logger.info("Applied configuration from release %s", release.tag)

    def _refresh_from_release(self) -> Optional[ReleaseInfo]:
        try:
            release = self.release_service.fetch_latest_release(machine_architecture())
        except ReleaseError as exc:
            logger.warning("Server config fetch failed, using local config: %s", exc)
            return None
        self._apply_release(release)
        return release

    def _apply_image_overrides(self):
        changes = {}
        if self.app_image:
            changes["app_image"] = self.app_image
        if self.proxy_image:
            changes["proxy_image"] = self.proxy_image
        if changes:
            self.env_config.update(**changes)

    def _configure(self, domain: str, admin_email: str, license_key: str):
        self.env_config.update(domain=domain.strip(), admin_email=admin_email.strip(), license_key=license_key.strip())

        if os.path.exists(self.env_file):
            logger.info("Found existing .env file at %s", self.env_file)
            previous = EnvConfig(
                logger=logger,
                data=default_release_config(self.install_dir),
                validation_service=self.validation_service,
            )
            previous_data = previous.load_from_file(self.env_file)
            if previous_data.private_key:
                self.env_config.update(private_key=previous_data.private_key)

        if not self.env_config.get_data().private_key:
            self.env_config.update(private_key=generate_private_key())

        self._refresh_from_release()
        self._apply_image_overrides()
        self.env_config.validate()
        self.env_config.save_to_file(self.env_file)

    def install(self, domain: str, admin_email: str, license_key: str) -> int:
        def _install():
            console.print("[bold blue]Infinity Metrics installer[/bold blue]")
            self.requirements_service.check_system_requirements()
            self.docker_runtime_service.validate_environment()
            self.database_service.check_available()
            self.filesystem_service.ensure_install_layout(self.install_dir)

            with self._lock():
                console.print("[blue]Configuring system...[/blue]")
                self._configure(domain, admin_email, license_key)
                config = self.env_config.get_data()

                console.print("[blue]Deploying application...[/blue]")
                self.deployment_service.deploy(config)

                console.print("[blue]Setting up maintenance...[/blue]")
                self.maintenance_service.install_binary(current_binary_path())
                self.maintenance_service.setup_cron_job(config.install_dir)

                self.deployment_service.verify_installation(config)

            console.print(f"[bold green]Infinity Metrics is installed at https://{config.domain}[/bold green]")

        return self._execute(_install)

    def _self_update(self, lock: InstallLock, release: Optional[ReleaseInfo], latest: str, installer_url: str):
        if not self.release_service.needs_update(__version__, latest):
            return

        arch = detect_architecture()
        binary_path = current_binary_path()
        if binary_path is None:
            logger.info("Running from a Python installation, skipping binary self-update")
            return

        url = self.release_service.binary_download_url(latest, arch, release, installer_url)
        if self.release_service.self_update(url, binary_path):
            console.print(f"[green]Binary updated to version {latest}, restarting.[/green]")
            lock.release()
            self.release_service.reexec(binary_path)

    def update(self) -> int:
        def _update():
            if not os.path.exists(self.env_file):
                raise ConfigError(actionable_error("config_not_found", path=self.env_file))

            with self._lock() as lock:
                self.env_config.load_from_file(self.env_file)
                installer_url = self.env_config.get_data().installer_url

                console.print("[blue]Checking for updates...[/blue]")
                release, latest = self.release_service.resolve_latest_version(
                    machine_architecture(),
                    installer_url,
                )
                if release is not None:
                    self._apply_release(release)
                self._self_update(lock, release, latest, installer_url)

                self._apply_image_overrides()
                self.env_config.validate()
                config = self.env_config.get_data()
                self.deployment_service.update(config)
                self.env_config.save_to_file(self.env_file)

            console.print("[bold green]Update completed.[/bold green]")

        return self._execute(_update)

    def _load_existing_config(self):
        if os.path.exists(self.env_file):
            self.env_config.load_from_file(self.env_file)
        else:
            logger.info("No .env found at %s, using default paths", self.env_file)

    def _restart_running_slots(self):
        for slot in ApplicationSlot:
            name = slot.container_name
            if not self.docker_runtime_service.is_running(name):
                continue
            try:
                self.docker_runtime_service.restart(name)
                logger.info("Restarted %s to reopen the database", name)
            except DeploymentError as exc:
                logger.warning("Could not restart %s after restore: %s", name, exc)

    def restore(self, backup_path: Optional[str] = None, assume_yes: bool = False) -> int:
        def _restore():
            with self._lock():
                self._load_existing_config()
                config = self.env_config.get_data()

                selected = backup_path
                if selected is None:
                    backups = self.database_service.list_backups(config.backup_path)
                    if not backups:
                        raise BackupError(actionable_error("no_backups", path=config.backup_path))
                    selected = self.database_service.prompt_selection(backups)

                if not assume_yes and not self.confirm_func(
                    f"Restore {selected} over {config.main_db_path}?", default=False
                ):
                    console.print("[yellow]Restore cancelled.[/yellow]")
                    return

                self.database_service.restore_database(config.main_db_path, selected)
                self._restart_running_slots()

        return self._execute(_restore)

    def list_backups(self) -> int:
        def _list():
            self._load_existing_config()
            backup_dir = self.env_config.get_data().backup_path
            backups = self.database_service.list_backups(backup_dir) if os.path.isdir(backup_dir) else []
            if not backups:
                console.print(f"[yellow]{actionable_error('no_backups', path=backup_dir)}[/yellow]")
                return
            console.print(self.database_service.render_backups_table(backups))

        return self._execute(_list)

    def create_admin_user(self, email: str, password: str) -> int:
        return self._execute(lambda: self.admin_service.create_admin_user(email, password))

    def change_admin_password(self, email: str, new_password: str) -> int:
        return self._execute(lambda: self.admin_service.change_admin_password(email, new_password))
