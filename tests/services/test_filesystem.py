import os

import pytest

from infinityinstaller.errors import DeploymentError
from infinityinstaller.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def test_ensure_install_layout_creates_all_directories(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    install_dir = tmp_path / "infinity"

    created = service.ensure_install_layout(str(install_dir))

    for relative in ("storage", "logs", "caddy", os.path.join("caddy", "config"), os.path.join("storage", "backups")):
        assert (install_dir / relative).is_dir()
    assert str(install_dir) in created


def test_ensure_install_layout_wraps_os_errors(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(DeploymentError, match="Failed to create directory"):
        service.ensure_install_layout(str(blocker))


def test_write_text_creates_parent_directories(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    target = tmp_path / "nested" / "Caddyfile"

    service.write_text(str(target), "content\n")

    assert target.read_text(encoding="utf-8") == "content\n"
