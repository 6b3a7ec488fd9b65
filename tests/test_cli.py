from click.testing import CliRunner

import infinityinstaller.cli as cli_module
from infinityinstaller import __version__
from infinityinstaller.models import RetentionConfig


class FakeInstaller:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []
        FakeInstaller.instances.append(self)

    def install(self, domain, admin_email, license_key):
        self.calls.append(("install", domain, admin_email, license_key))
        return 0

    def update(self):
        self.calls.append(("update",))
        return 0

    def restore(self, backup_path=None, assume_yes=False):
        self.calls.append(("restore", backup_path, assume_yes))
        return 0

    def list_backups(self):
        self.calls.append(("list_backups",))
        return 1

    def create_admin_user(self, email, password):
        self.calls.append(("create_admin_user", email, password))
        return 0

    def change_admin_password(self, email, new_password):
        self.calls.append(("change_admin_password", email, new_password))
        return 0


def _patch_installer(monkeypatch):
    FakeInstaller.instances = []
    monkeypatch.setattr(cli_module, "InfinityInstaller", FakeInstaller)


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    config_file = tmp_path / "installer.yml"
    config_file.write_text(
        "install_dir: /srv/from-config\n"
        "app_image: registry.example.com/infinity-metrics:pinned\n"
        "retention_daily_days: 3\n"
        "retention_monthly_days: 30\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "--install-dir", str(tmp_path / "cli"), "update"],
    )

    assert result.exit_code == 0
    installer = FakeInstaller.instances[0]
    assert installer.kwargs["install_dir"] == str(tmp_path / "cli")
    assert installer.kwargs["app_image"] == "registry.example.com/infinity-metrics:pinned"
    assert installer.kwargs["proxy_image"] is None
    assert installer.kwargs["retention"] == RetentionConfig(daily_days=3, weekly_days=14, monthly_days=30)
    assert installer.kwargs["allow_insecure_http"] is False
    assert installer.calls == [("update",)]


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    (tmp_path / ".infinity-metrics.yml").write_text("install_dir: /srv/default\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["update"])

    assert result.exit_code == 0
    assert FakeInstaller.instances[0].kwargs["install_dir"] == "/srv/default"


def test_cli_rejects_non_numeric_retention(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    config_file = tmp_path / "installer.yml"
    config_file.write_text("retention_weekly_days: often\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "update"])

    assert result.exit_code != 0
    assert "Retention values must be whole numbers" in result.output
    assert FakeInstaller.instances == []


def test_install_reads_environment_variables(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        ["install"],
        env={"DOMAIN": "analytics.example.com", "ADMIN_EMAIL": "admin@example.com", "LICENSE_KEY": "LIC-1"},
    )

    assert result.exit_code == 0
    assert FakeInstaller.instances[0].calls == [("install", "analytics.example.com", "admin@example.com", "LIC-1")]


def test_install_prompts_for_missing_values(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)
    for name in ("DOMAIN", "ADMIN_EMAIL", "LICENSE_KEY"):
        monkeypatch.delenv(name, raising=False)

    result = CliRunner().invoke(
        cli_module.main,
        ["install", "--domain", "analytics.example.com"],
        input="admin@example.com\nLIC-9\n",
    )

    assert result.exit_code == 0
    assert FakeInstaller.instances[0].calls == [("install", "analytics.example.com", "admin@example.com", "LIC-9")]


def test_restore_db_passes_backup_and_yes(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)
    backup = tmp_path / "backup_20240312_030000.db"
    backup.write_bytes(b"snapshot")

    result = CliRunner().invoke(cli_module.main, ["restore-db", "--backup", str(backup), "--yes"])

    assert result.exit_code == 0
    assert FakeInstaller.instances[0].calls == [("restore", str(backup), True)]


def test_list_backups_propagates_exit_code(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["list-backups"])

    assert result.exit_code == 1
    assert FakeInstaller.instances[0].calls == [("list_backups",)]


def test_create_admin_user_prompts_for_hidden_confirmed_password(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)
    for name in ("ADMIN_EMAIL", "ADMIN_PASSWORD"):
        monkeypatch.delenv(name, raising=False)

    result = CliRunner().invoke(
        cli_module.main,
        ["create-admin-user"],
        input="admin@example.com\npassword123\npassword123\n",
    )

    assert result.exit_code == 0
    assert "password123" not in result.output
    assert FakeInstaller.instances[0].calls == [("create_admin_user", "admin@example.com", "password123")]


def test_change_admin_password_accepts_options(tmp_path, monkeypatch):
    _patch_installer(monkeypatch)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        ["change-admin-password", "--email", "admin@example.com", "--password", "n3w-password"],
    )

    assert result.exit_code == 0
    assert FakeInstaller.instances[0].calls == [("change_admin_password", "admin@example.com", "n3w-password")]


def test_version_command(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"infinity-metrics {__version__}"
