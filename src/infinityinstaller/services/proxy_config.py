"""Reverse proxy (Caddy) configuration rendering and live reload."""

import os
from typing import List, Optional

from infinityinstaller.constants import APP_PORT, FILE_MODE, HEALTH_PATH, PROXY_CONTAINER_NAME
from infinityinstaller.errors import DeploymentError, InstallerError
from infinityinstaller.models import ReleaseConfig


def tls_mode_for_environment(admin_email: str, environment: Optional[str] = None) -> str:
    """Return ``internal`` for test runs, else the ACME account e-mail."""
    if environment is None:
        environment = os.environ.get("ENV", "")
    if environment == "test":
        return "internal"
    return admin_email


def render_caddyfile(config: ReleaseConfig, upstreams: List[str], tls_mode: str) -> str:
    if not upstreams or len(upstreams) > 2:
        raise ValueError("a proxy config needs one or two upstreams")

    targets = " ".join(f"{name}:{APP_PORT}" for name in upstreams)
    domain = config.domain
    return f"""{{
    admin 127.0.0.1:2019
    email {config.admin_email}
    log {{
        level INFO
        output file /data/logs/caddy.log {{
            roll_size 50MiB
            roll_keep 5
            roll_keep_for 168h
        }}
    }}
    grace_period 30s
}}

{domain}:80 {{
    redir https://{domain}{{uri}} 301
}}

{domain}:443 {{
    tls {tls_mode}
    encode zstd gzip

    file_server /assets/* {{
        precompressed
    }}

    reverse_proxy {targets} {{
        health_uri {HEALTH_PATH}
        health_interval 10s
        health_timeout 5s
        health_status 200
        fail_duration 30s
        max_fails 2

        header_up X-Forwarded-Proto {{scheme}}
        header_up X-Forwarded-For {{http.request.remote.host}}
        header_up User-Agent {{http.request.user_agent}}
        header_up Referer {{http.request.referer}}
        header_up Accept-Language {{http.request.header.Accept-Language}}

        flush_interval -1
    }}

    header {{
        Strict-Transport-Security "max-age=31536000; includeSubDomains"
        X-Content-Type-Options "nosniff"
        X-Frame-Options "DENY"
        Content-Security-Policy "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'"
        Referrer-Policy "strict-origin-when-cross-origin"
        Permissions-Policy "microphone=(), camera=()"
        -Server
    }}

    log {{
        output file /data/logs/{domain}-access.log {{
            roll_size 50MiB
            roll_keep 5
            roll_keep_for 168h
        }}
        format json
    }}

    handle_errors {{
        @5xx expression {{http.error.status_code}} >= 500 && {{http.error.status_code}} <= 599
        respond @5xx "Service temporarily unavailable" 503
    }}
}}
"""


class ProxyConfigService:
    """Renders the Caddyfile, writes it to the install directory and reloads the live proxy."""

    def __init__(self, logger, console, run_cmd, filesystem_service, container_name: str = PROXY_CONTAINER_NAME):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.filesystem_service = filesystem_service
        self.container_name = container_name

    def render(self, config: ReleaseConfig, primary: str, secondary: Optional[str] = None) -> str:
        upstreams = [primary] if not secondary else [primary, secondary]
        tls_mode = tls_mode_for_environment(config.admin_email)
        if tls_mode == "internal":
            self.logger.info("Using self-signed certificate for test environment")
        else:
            self.logger.debug("Using ACME certificates for %s", config.domain)
        return render_caddyfile(config, upstreams, tls_mode)

    def write(self, config: ReleaseConfig, content: str) -> str:
        self.filesystem_service.write_text(config.proxy_config_path, content, FILE_MODE)
        self.logger.debug("Proxy config written to %s", config.proxy_config_path)
        return config.proxy_config_path

    def reload(self, content: str):
        """Push *content* into the running proxy without restarting it."""
        try:
            self.run_cmd(
                [
                    "docker",
                    "exec",
                    "-i",
                    self.container_name,
                    "caddy",
                    "reload",
                    "--config",
                    "/dev/stdin",
                    "--adapter",
                    "caddyfile",
                ],
                capture_output=True,
                input_text=content,
            )
        except InstallerError as exc:
            raise DeploymentError(f"Failed to reload proxy configuration: {exc}") from exc

    def apply(self, config: ReleaseConfig, primary: str, secondary: Optional[str] = None):
        content = self.render(config, primary, secondary)
        self.write(config, content)
        self.reload(content)
        targets = primary if not secondary else f"{primary} + {secondary}"
        self.logger.info("Proxy now routes traffic to %s", targets)
