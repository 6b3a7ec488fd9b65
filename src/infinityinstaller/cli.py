import logging
import os

import click
from rich.logging import RichHandler

from . import __version__
from .constants import (
    DEFAULT_CONFIG_FILE_NAME,
    DEFAULT_INSTALL_DIR,
    DEFAULT_RETENTION_DAILY_DAYS,
    DEFAULT_RETENTION_MONTHLY_DAYS,
    DEFAULT_RETENTION_WEEKLY_DAYS,
)
from .core import InfinityInstaller, InstallerError
from .models import RetentionConfig
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("infinityinstaller")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _build_installer(ctx: click.Context) -> InfinityInstaller:
    options = ctx.obj
    return InfinityInstaller(
        install_dir=options["install_dir"],
        app_image=options["app_image"],
        proxy_image=options["proxy_image"],
        retention=options["retention"],
        allow_insecure_http=options["allow_insecure_http"],
    )


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE_NAME} if present.",
)
@click.option("--install-dir", required=False, type=click.Path(), help="Installation directory")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--allow-insecure-http",
    is_flag=True,
    default=None,
    help="Allow HTTP release URLs (insecure). By default only HTTPS URLs are accepted.",
)
@click.pass_context
def main(ctx, config, install_dir, verbose, log_file, allow_insecure_http):
    """Install, update and restore an Infinity Metrics deployment."""
    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE_NAME)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    _configure_logging(verbose, log_file)

    try:
        retention = RetentionConfig(
            daily_days=int(
                config_values.get("retention_daily_days", DEFAULT_RETENTION_DAILY_DAYS)
            ),
            weekly_days=int(
                config_values.get("retention_weekly_days", DEFAULT_RETENTION_WEEKLY_DAYS)
            ),
            monthly_days=int(
                config_values.get("retention_monthly_days", DEFAULT_RETENTION_MONTHLY_DAYS)
            ),
        )
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Retention values must be whole numbers of days: {exc}") from exc

    ctx.obj = {
        "install_dir": str(
            _resolve_option(install_dir, config_values, "install_dir", default=DEFAULT_INSTALL_DIR)
        ),
        "app_image": config_values.get("app_image"),
        "proxy_image": config_values.get("proxy_image"),
        "retention": retention,
        "allow_insecure_http": bool(
            _resolve_option(allow_insecure_http, config_values, "allow_insecure_http", default=False)
        ),
    }


@main.command()
@click.option("--domain", envvar="DOMAIN", help="Domain the installation is served on")
@click.option("--admin-email", envvar="ADMIN_EMAIL", help="Admin e-mail, also used for ACME")
@click.option("--license-key", envvar="LICENSE_KEY", help="Infinity Metrics license key")
@click.pass_context
def install(ctx, domain, admin_email, license_key):
    """Install Infinity Metrics on this host."""
    if not domain:
        domain = click.prompt("Domain (e.g. analytics.example.com)")
    if not admin_email:
        admin_email = click.prompt("Admin email")
    if not license_key:
        license_key = click.prompt("License key")

    installer = _build_installer(ctx)
    raise SystemExit(installer.install(domain, admin_email, license_key))


@main.command()
@click.pass_context
def update(ctx):
    """Update the installer and roll out the latest release without downtime."""
    installer = _build_installer(ctx)
    raise SystemExit(installer.update())


@main.command("restore-db")
@click.option(
    "--backup",
    "backup_path",
    required=False,
    type=click.Path(exists=True, dir_okay=False),
    help="Backup file to restore. Prompts for a selection when omitted.",
)
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def restore_db(ctx, backup_path, assume_yes):
    """Restore the database from a backup."""
    installer = _build_installer(ctx)
    raise SystemExit(installer.restore(backup_path=backup_path, assume_yes=assume_yes))


@main.command("list-backups")
@click.pass_context
def list_backups(ctx):
    """List available database backups."""
    installer = _build_installer(ctx)
    raise SystemExit(installer.list_backups())


@main.command("create-admin-user")
@click.option("--email", envvar="ADMIN_EMAIL", prompt="Admin email", help="E-mail of the admin user")
@click.option(
    "--password",
    envvar="ADMIN_PASSWORD",
    prompt="Admin password (minimum 8 characters)",
    hide_input=True,
    confirmation_prompt=True,
    help="Password of the admin user",
)
@click.pass_context
def create_admin_user(ctx, email, password):
    """Create the initial admin user in the running application."""
    installer = _build_installer(ctx)
    raise SystemExit(installer.create_admin_user(email, password))


@main.command("change-admin-password")
@click.option("--email", envvar="ADMIN_EMAIL", prompt="Admin email", help="E-mail of the admin user")
@click.option(
    "--password",
    envvar="ADMIN_PASSWORD",
    prompt="New admin password (minimum 8 characters)",
    hide_input=True,
    confirmation_prompt=True,
    help="New password",
)
@click.pass_context
def change_admin_password(ctx, email, password):
    """Change the password of an existing admin user."""
    installer = _build_installer(ctx)
    raise SystemExit(installer.change_admin_password(email, password))


@main.command()
def version():
    """Print the installer version."""
    click.echo(f"infinity-metrics {__version__}")


if __name__ == "__main__":
    main()
