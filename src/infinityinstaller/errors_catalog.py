"""Actionable error catalog for the Infinity Metrics installer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "command_not_found": {
        "what": "Required command not found: {command}.",
        "next": "Install `{command}` on this host and try again.",
    },
    "insecure_http": {
        "what": "{label} uses insecure HTTP.",
        "next": "Switch to HTTPS or use `--allow-insecure-http` only for trusted endpoints.",
    },
    "lock_held": {
        "what": "Another installer run is in progress (lock file: {path}{owner}).",
        "next": "Wait for it to finish. If no other run is active, remove the lock file and retry.",
    },
    "config_not_found": {
        "what": "Installation config not found: {path}",
        "next": "Run `infinity-metrics install` first or pass the correct `--install-dir`.",
    },
    "proxy_not_running": {
        "what": "The reverse proxy container `{container}` is not running.",
        "next": "Run `infinity-metrics install` to restore the base installation before updating.",
    },
    "no_backups": {
        "what": "No database backups found in {path}.",
        "next": "Backups are created automatically before every update.",
    },
    "unsupported_architecture": {
        "what": "Unsupported architecture: {arch}.",
        "next": "Use an amd64 or arm64 host.",
    },
    "installation_not_running": {
        "what": "Containers are not running after deployment: {containers}.",
        "next": "Inspect `docker ps -a` and `docker logs <container>` for startup errors.",
    },
    "root_required": {
        "what": "This installer must be run as root.",
        "next": "Re-run it with sudo, e.g. `sudo infinity-metrics install`.",
    },
    "port_unavailable": {
        "what": "Port {port} is not available; it is required for HTTP(S) access and certificate issuance.",
        "next": "Stop the service bound to port {port}, or set SKIP_PORT_CHECKING=1 if you know it will be freed.",
    },
    "app_not_running": {
        "what": "No application container is running ({containers}).",
        "next": "Run `infinity-metrics install` or `infinity-metrics update` to start the application first.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
