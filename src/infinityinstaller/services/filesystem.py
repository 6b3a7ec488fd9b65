"""Filesystem helpers for the installer."""

import logging
import os
import sys
from typing import List

from rich.console import Console

from infinityinstaller.constants import DIR_MODE, FILE_MODE, INSTALL_SUBDIRS
from infinityinstaller.errors import DeploymentError


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_install_layout(self, install_dir: str) -> List[str]:
        created = []
        for relative in ("",) + INSTALL_SUBDIRS:
            path = os.path.join(install_dir, relative) if relative else install_dir
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as exc:
                raise DeploymentError(f"Failed to create directory {path}: {exc}") from exc
            self.set_permissions(path, DIR_MODE)
            created.append(path)
        self.logger.debug("Install layout ready under %s", install_dir)
        return created

    def write_text(self, path: str, content: str, mode: int = FILE_MODE):
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
        except OSError as exc:
            raise DeploymentError(f"Failed to write {path}: {exc}") from exc
        self.set_permissions(path, mode)
