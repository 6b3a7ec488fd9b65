"""Release lookup, version comparison and installer self-update."""

import os
import platform
import re
import subprocess
import sys
import tempfile
from typing import Dict, List, Optional, Tuple

import requests
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from infinityinstaller.constants import (
    BINARY_NAME_PREFIX,
    DEFAULT_INSTALLER_URL,
    GITHUB_REPO,
    RELEASE_CONFIG_ASSET,
    RELEASES_API_URL,
    SCRIPT_MODE,
    SUPPORTED_ARCHITECTURES,
)
from infinityinstaller.errors import ReleaseError
from infinityinstaller.errors_catalog import actionable_error
from infinityinstaller.models import ReleaseInfo

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

_LEADING_DIGITS = re.compile(r"\d+")


def _segment_value(segment: str) -> int:
    match = _LEADING_DIGITS.match(segment.strip())
    return int(match.group(0)) if match else 0


def compare_versions(first: str, second: str) -> int:
    """Compare dotted versions numerically, segment by segment.

    The shorter version is padded with zeros, so ``1.0`` equals ``1.0.0``.
    A segment without a leading number counts as 0.
    """
    first_parts: List[str] = first.split(".")
    second_parts: List[str] = second.split(".")
    width = max(len(first_parts), len(second_parts))
    first_parts += ["0"] * (width - len(first_parts))
    second_parts += ["0"] * (width - len(second_parts))

    for left, right in zip(first_parts, second_parts):
        left_value = _segment_value(left)
        right_value = _segment_value(right)
        if left_value < right_value:
            return -1
        if left_value > right_value:
            return 1
    return 0


def extract_version_from_url(url: str) -> str:
    for part in (url or "").split("/"):
        if part.startswith(BINARY_NAME_PREFIX):
            version = part[len(BINARY_NAME_PREFIX) :]
            for arch in SUPPORTED_ARCHITECTURES:
                suffix = f"-{arch}"
                if version.endswith(suffix):
                    version = version[: -len(suffix)]
                    break
            return version
    return ""


def machine_architecture(machine: Optional[str] = None) -> str:
    raw = (machine if machine is not None else platform.machine()).lower()
    return _ARCH_ALIASES.get(raw, raw)


def detect_architecture(machine: Optional[str] = None) -> str:
    arch = machine_architecture(machine)
    if arch not in SUPPORTED_ARCHITECTURES:
        raise ReleaseError(actionable_error("unsupported_architecture", arch=arch or "unknown"))
    return arch


def normalize_tag(tag: str) -> str:
    version = (tag or "").strip()
    if version.startswith("v"):
        version = version[1:]
    if not version or not version[0].isdigit():
        raise ReleaseError(f"Invalid version in release tag: {tag!r}")
    return version


def binary_asset_name(version: str, arch: str) -> str:
    return f"{BINARY_NAME_PREFIX}{version}-{arch}"


class ReleaseService:
    """Talks to the release API and swaps the installed binary for a newer one."""

    def __init__(
        self,
        logger,
        console,
        validation_service,
        requests_module=requests,
        api_url: str = RELEASES_API_URL,
        timeout: float = 30.0,
    ):
        self.logger = logger
        self.console = console
        self.validation_service = validation_service
        self.requests = requests_module
        self.api_url = api_url
        self.timeout = timeout

    def _get_json(self, url: str, label: str):
        try:
            response = self.requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except self.requests.RequestException as exc:
            raise ReleaseError(f"Failed to fetch {label}: {exc}") from exc
        except ValueError as exc:
            raise ReleaseError(f"Failed to parse {label}: {exc}") from exc

    def fetch_latest_release(self, arch: str) -> ReleaseInfo:
        self.logger.info("Fetching latest release from %s", self.api_url)
        payload = self._get_json(self.api_url, "latest release")
        if not isinstance(payload, dict):
            raise ReleaseError("Failed to parse latest release: expected a JSON object")

        tag = str(payload.get("tag_name") or "")
        version = normalize_tag(tag)
        expected_binary = binary_asset_name(version, arch)

        binary_url = None
        config_url = None
        for asset in payload.get("assets") or []:
            name = asset.get("name")
            if name == expected_binary:
                binary_url = asset.get("browser_download_url")
            elif name == RELEASE_CONFIG_ASSET:
                config_url = asset.get("browser_download_url")

        if not binary_url:
            self.logger.warning("Binary %s not found in release %s", expected_binary, tag)
        return ReleaseInfo(version=version, tag=tag, binary_url=binary_url, config_url=config_url)

    def fetch_release_images(self, config_url: str) -> Dict[str, str]:
        """Read the image references published in a release's ``config.json``."""
        self.validation_service.enforce_https_policy(config_url, "release config", self.logger, self.console)
        self.logger.info("Fetching %s from %s", RELEASE_CONFIG_ASSET, config_url)
        payload = self._get_json(config_url, RELEASE_CONFIG_ASSET)
        if not isinstance(payload, dict):
            raise ReleaseError(f"{RELEASE_CONFIG_ASSET} must contain a JSON object")

        images = {}
        for key in ("app_image", "caddy_image"):
            value = payload.get(key)
            if value:
                images[key] = str(value)
        return images

    def resolve_latest_version(self, arch: str, installer_url: str) -> Tuple[Optional[ReleaseInfo], str]:
        """Return the latest release (if the API answered) and its version.

        When the release API is unavailable the version is taken from the
        persisted installer URL instead; an empty string means unknown.
        """
        try:
            release = self.fetch_latest_release(arch)
            return release, release.version
        except ReleaseError as exc:
            self.logger.warning("Failed to fetch latest version: %s", exc)

        version = extract_version_from_url(installer_url)
        if not version:
            self.logger.warning("Could not determine latest version from URL: %s", installer_url)
        return None, version

    def binary_download_url(
        self,
        version: str,
        arch: str,
        release: Optional[ReleaseInfo] = None,
        installer_url: str = "",
    ) -> str:
        if release and release.binary_url:
            return release.binary_url
        if installer_url and installer_url != DEFAULT_INSTALLER_URL:
            return installer_url
        return (
            f"https://github.com/{GITHUB_REPO}/releases/download/v{version}/"
            f"{binary_asset_name(version, arch)}"
        )

    def download_binary(self, url: str, dest_path: str):
        self.validation_service.enforce_https_policy(url, "installer binary", self.logger, self.console)
        self.logger.info("Downloading new installer binary from %s", url)
        try:
            with self.requests.get(url, stream=True, timeout=60) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task("[cyan]Downloading installer...", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            raise ReleaseError(f"Download failed: {exc}") from exc
        except OSError as exc:
            raise ReleaseError(f"Failed to write new binary: {exc}") from exc

    def replace_binary(self, url: str, target_path: str):
        """Download *url* next to *target_path* and atomically rename it into place."""
        target_dir = os.path.dirname(os.path.abspath(target_path))
        try:
            fd, temp_path = tempfile.mkstemp(prefix=".infinity-metrics.", suffix=".new", dir=target_dir)
            os.close(fd)
        except OSError as exc:
            raise ReleaseError(f"Failed to create temporary file in {target_dir}: {exc}") from exc

        try:
            self.download_binary(url, temp_path)
            os.chmod(temp_path, SCRIPT_MODE)
            os.replace(temp_path, target_path)
        except (ReleaseError, OSError) as exc:
            try:
                os.remove(temp_path)
            except OSError:
                self.logger.debug("Temporary binary %s already removed", temp_path)
            if isinstance(exc, ReleaseError):
                raise
            raise ReleaseError(f"Failed to replace binary {target_path}: {exc}") from exc

        self.console.print(f"[green]Binary updated at {target_path}.[/green]")

    def needs_update(self, current_version: str, latest_version: str) -> bool:
        if latest_version and compare_versions(current_version, latest_version) < 0:
            self.console.print(
                f"[blue]Local version {current_version} is older than latest {latest_version}, updating binary...[/blue]"
            )
            return True

        self.logger.info(
            "Current version %s matches or is newer than latest %s, no binary update needed",
            current_version,
            latest_version or "unknown",
        )
        return False

    def self_update(self, url: str, target_path: str) -> bool:
        """Replace the binary at *target_path*. Failures are warnings, reported as ``False``."""
        try:
            self.replace_binary(url, target_path)
        except ReleaseError as exc:
            self.logger.warning("Failed to update binary: %s", exc)
            self.console.print("[yellow]Warning:[/yellow] Binary update failed, continuing with the current version.")
            return False
        return True

    def reexec(self, binary_path: str, argv: Optional[List[str]] = None):
        """Continue the current command as *binary_path*. Does not return."""
        args = [binary_path] + list((argv if argv is not None else sys.argv)[1:])
        self.logger.info("Restarting as %s", " ".join(args))
        if os.name == "posix":
            os.execv(binary_path, args)
        completed = subprocess.run(args)
        raise SystemExit(completed.returncode)
