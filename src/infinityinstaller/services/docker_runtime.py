"""Docker runtime services for the installer."""

import os
import time
from typing import Callable, Iterable, List, Optional

from infinityinstaller.constants import (
    APP_CONTAINER_PRIMARY,
    APP_MEMORY_LIMIT,
    APP_PORT,
    HEALTH_CHECK_ATTEMPTS,
    HEALTH_CHECK_INTERVAL_SECONDS,
    HEALTH_PATH,
    MAX_PULL_ATTEMPTS,
    NETWORK_NAME,
    PROXY_CONTAINER_NAME,
    PROXY_MEMORY_LIMIT,
    PULL_BACKOFF_SECONDS,
)
from infinityinstaller.errors import DeploymentError, InstallerError
from infinityinstaller.models import ReleaseConfig
from infinityinstaller.services.image_cache import ImageDigestCache


def _digest_part(reference: str) -> str:
    return reference.split("@", 1)[1] if "@" in reference else reference


class DockerRuntimeService:
    """Manages containers, the shared network and images through the docker CLI."""

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        digest_cache: Optional[ImageDigestCache] = None,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.digest_cache = digest_cache or ImageDigestCache()

    def validate_environment(self):
        self.console.print("[blue]Validating Docker environment...[/blue]")
        result = self.run_cmd(["docker", "--version"], capture_output=True)
        self.logger.debug("Docker version: %s", (result.stdout or "").strip())
        self.console.print("[green]Docker is available.[/green]")

    def is_running(self, name: str) -> bool:
        result = self.run_cmd(
            ["docker", "ps", "-q", "-f", f"name=^{name}$"],
            check=False,
            capture_output=True,
        )
        return result.returncode == 0 and bool((result.stdout or "").strip())

    def ensure_network(self, network: str = NETWORK_NAME) -> bool:
        result = self.run_cmd(["docker", "network", "inspect", network], check=False, capture_output=True)
        if result.returncode == 0:
            return False

        self.logger.info("Creating Docker network %s", network)
        try:
            self.run_cmd(["docker", "network", "create", network], capture_output=True)
        except InstallerError as exc:
            raise DeploymentError(f"Failed to create network {network}: {exc}") from exc
        return True

    def network_members(self, network: str = NETWORK_NAME) -> List[str]:
        result = self.run_cmd(
            [
                "docker",
                "network",
                "inspect",
                network,
                "--format",
                "{{range .Containers}}{{.Name}} {{end}}",
            ],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            raise DeploymentError(
                f"Failed to inspect network {network}: {(result.stderr or '').strip()}"
            )
        return (result.stdout or "").split()

    def ensure_network_connected(self, container: str, network: str = NETWORK_NAME) -> bool:
        """Connect *container* to *network* unless it is already a member.

        Returns ``True`` when a connect call was issued.
        """
        if container in self.network_members(network):
            self.logger.info("Container %s is already connected to network %s", container, network)
            return False

        self.logger.info("Connecting container %s to network %s", container, network)
        try:
            self.run_cmd(["docker", "network", "connect", network, container], capture_output=True)
        except InstallerError as exc:
            raise DeploymentError(
                f"Failed to connect container {container} to network {network}: {exc}"
            ) from exc
        return True

    def local_image_digests(self, image: str) -> List[str]:
        result = self.run_cmd(
            ["docker", "image", "inspect", "--format", "{{range .RepoDigests}}{{.}} {{end}}", image],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return []
        return [_digest_part(entry) for entry in (result.stdout or "").split()]

    def remote_image_digest(self, image: str) -> Optional[str]:
        cached = self.digest_cache.get(image)
        if cached:
            self.logger.debug("Using cached digest for %s: %s", image, cached)
            return cached

        result = self.run_cmd(
            ["docker", "buildx", "imagetools", "inspect", image, "--format", "{{.Manifest.Digest}}"],
            check=False,
            capture_output=True,
        )
        output = (result.stdout or "").strip()
        if result.returncode != 0 or not output:
            return None

        digest = _digest_part(output)
        self.digest_cache.put(image, digest)
        return digest

    def should_pull_image(self, image: str) -> bool:
        local_digests = self.local_image_digests(image)
        if not local_digests:
            self.logger.info("Image %s not found locally, will pull", image)
            return True

        remote_digest = self.remote_image_digest(image)
        if remote_digest is None:
            self.logger.warning("Could not get remote digest for %s, will pull anyway", image)
            return True

        if remote_digest in local_digests:
            self.logger.info("Image %s is up to date (%s), skipping pull", image, remote_digest)
            return False

        self.logger.info("Remote image %s has a new digest %s, will pull", image, remote_digest)
        return True

    def pull_image(self, image: str):
        self.console.print(f"[blue]Pulling {image}...[/blue]")
        for attempt in range(1, MAX_PULL_ATTEMPTS + 1):
            result = self.run_cmd(["docker", "pull", image], check=False, capture_output=True)
            if result.returncode == 0:
                self.console.print(f"[green]{image} pulled successfully.[/green]")
                return

            error = (result.stderr or "").strip() or f"exit code {result.returncode}"
            if attempt == MAX_PULL_ATTEMPTS:
                raise DeploymentError(
                    f"Pull {image} failed after {MAX_PULL_ATTEMPTS} attempts: {error}"
                )

            delay = attempt * PULL_BACKOFF_SECONDS
            self.logger.warning(
                "Pull %s failed, retrying in %.0fs (%s/%s): %s",
                image,
                delay,
                attempt,
                MAX_PULL_ATTEMPTS,
                error,
            )
            time.sleep(delay)

    def pull_images(self, images: Iterable[str]):
        for image in images:
            if self.should_pull_image(image):
                self.pull_image(image)

    def stop_and_remove(self, name: str):
        self.run_cmd(["docker", "stop", name], check=False, capture_output=True)
        self.run_cmd(["docker", "rm", name], check=False, capture_output=True)

    def run_app_container(self, config: ReleaseConfig, name: str):
        self.stop_and_remove(name)
        self.logger.info("Deploying %s...", name)
        cmd = [
            "docker",
            "run",
            "-d",
            "--name",
            name,
            "--network",
            NETWORK_NAME,
            "-v",
            f"{os.path.join(config.install_dir, 'storage')}:/app/storage",
            "-v",
            f"{os.path.join(config.install_dir, 'logs')}:/app/logs",
            "-e",
            "INFINITY_METRICS_LOG_LEVEL=info",
            "-e",
            f"INFINITY_METRICS_APP_PORT={APP_PORT}",
            "-e",
            f"INFINITY_METRICS_DOMAIN={config.domain}",
            "-e",
            f"INFINITY_METRICS_LICENSE_KEY={config.license_key}",
            "-e",
            f"INFINITY_METRICS_PRIVATE_KEY={config.private_key}",
            "-e",
            f"SERVER_INSTANCE_ID={name}",
            f"--memory={APP_MEMORY_LIMIT}",
            "--restart",
            "unless-stopped",
            config.app_image,
        ]
        try:
            self.run_cmd(cmd, capture_output=True)
        except InstallerError as exc:
            raise DeploymentError(f"Failed to start {name}: {exc}") from exc
        self.console.print(f"[green]{name} deployed.[/green]")

    def run_proxy_container(self, config: ReleaseConfig):
        self.stop_and_remove(PROXY_CONTAINER_NAME)
        self.logger.info("Starting %s...", PROXY_CONTAINER_NAME)
        proxy_data_dir = os.path.join(config.install_dir, "caddy")
        cmd = [
            "docker",
            "run",
            "-d",
            "--name",
            PROXY_CONTAINER_NAME,
            "--network",
            NETWORK_NAME,
            "-p",
            "80:80",
            "-p",
            "443:443",
            "-p",
            "443:443/udp",
            "-v",
            f"{config.proxy_config_path}:/etc/caddy/Caddyfile:ro",
            "-v",
            f"{proxy_data_dir}:/data",
            "-v",
            f"{os.path.join(proxy_data_dir, 'config')}:/config",
            "-v",
            f"{os.path.join(config.install_dir, 'logs')}:/data/logs",
            "-e",
            f"DOMAIN={config.domain}",
            "-e",
            f"ADMIN_EMAIL={config.admin_email}",
            "-e",
            f"APP_NAME={APP_CONTAINER_PRIMARY}",
            f"--memory={PROXY_MEMORY_LIMIT}",
            "--restart",
            "unless-stopped",
            config.proxy_image,
        ]
        try:
            self.run_cmd(cmd, capture_output=True)
        except InstallerError as exc:
            raise DeploymentError(f"Failed to start {PROXY_CONTAINER_NAME}: {exc}") from exc
        self.console.print(f"[green]{PROXY_CONTAINER_NAME} deployed.[/green]")

    def check_health(
        self,
        name: str,
        attempts: int = HEALTH_CHECK_ATTEMPTS,
        interval_seconds: float = HEALTH_CHECK_INTERVAL_SECONDS,
    ) -> bool:
        url = f"http://localhost:{APP_PORT}{HEALTH_PATH}"
        for attempt in range(1, attempts + 1):
            result = self.run_cmd(
                ["docker", "exec", name, "curl", "-fsS", url],
                check=False,
                capture_output=True,
            )
            if result.returncode == 0:
                self.logger.info("%s is healthy", name)
                return True

            self.logger.debug("Health check %s/%s for %s failed", attempt, attempts, name)
            if attempt < attempts:
                time.sleep(interval_seconds)
        return False

    def restart(self, name: str):
        try:
            self.run_cmd(["docker", "restart", name], capture_output=True)
        except InstallerError as exc:
            raise DeploymentError(f"Failed to restart {name}: {exc}") from exc

    def prune_images(self):
        self.run_cmd(["docker", "image", "prune", "-f"], check=False, capture_output=True)
