"""Shared constants for the Infinity Metrics installer."""

import os

DIR_MODE = 0o755
FILE_MODE = 0o644
SCRIPT_MODE = 0o755

NETWORK_NAME = "infinity-network"
PROXY_CONTAINER_NAME = "infinity-caddy"
APP_CONTAINER_PRIMARY = "infinity-app-1"
APP_CONTAINER_SECONDARY = "infinity-app-2"
APP_PORT = 8080
HEALTH_PATH = "/_health"

APP_MEMORY_LIMIT = "512m"
PROXY_MEMORY_LIMIT = "256m"

MAX_PULL_ATTEMPTS = 3
PULL_BACKOFF_SECONDS = 2.0
MAX_DEPLOY_ATTEMPTS = 3
DEPLOY_BACKOFF_SECONDS = 1.0
HEALTH_CHECK_ATTEMPTS = 5
HEALTH_CHECK_INTERVAL_SECONDS = 1.0
TRAFFIC_STABILIZATION_SECONDS = 2.0
DIGEST_CACHE_TTL_SECONDS = 300.0

DEFAULT_INSTALL_DIR = "/opt/infinity-metrics"
DEFAULT_APP_IMAGE = "karloscodes/infinity-metrics-beta:latest"
DEFAULT_PROXY_IMAGE = "caddy:2.7-alpine"
DEFAULT_VERSION = "latest"

ENV_FILE_NAME = ".env"
LOCK_FILE_NAME = ".installer.lock"
PROXY_CONFIG_FILE_NAME = "Caddyfile"
DATABASE_RELATIVE_PATH = os.path.join("storage", "infinity-metrics-production.db")
BACKUPS_RELATIVE_PATH = os.path.join("storage", "backups")
INSTALL_SUBDIRS = (
    "storage",
    "logs",
    "caddy",
    os.path.join("caddy", "config"),
    BACKUPS_RELATIVE_PATH,
)

BACKUP_PREFIX = "backup_"
BACKUP_SUFFIX = ".db"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
SAFETY_COPY_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
INTEGRITY_OK = "ok"

DEFAULT_RETENTION_DAILY_DAYS = 7
DEFAULT_RETENTION_WEEKLY_DAYS = 14
DEFAULT_RETENTION_MONTHLY_DAYS = 90

GITHUB_REPO = "karloscodes/infinity-metrics-installer"
RELEASES_API_URL = f"https://api.github.com/repos/{GITHUB_REPO}/releases/latest"
DEFAULT_INSTALLER_URL = f"https://github.com/{GITHUB_REPO}/releases/latest"
BINARY_NAME_PREFIX = "infinity-metrics-v"
RELEASE_CONFIG_ASSET = "config.json"
SUPPORTED_ARCHITECTURES = ("amd64", "arm64")
BINARY_INSTALL_PATH = "/usr/local/bin/infinity-metrics"

CRON_FILE = "/etc/cron.d/infinity-metrics-update"
CRON_SCHEDULE = "0 3 * * *"

DEFAULT_CONFIG_FILE_NAME = ".infinity-metrics.yml"

ADMIN_CLI_PATH = "/app/imctl"
MIN_ADMIN_PASSWORD_LENGTH = 8
REQUIRED_PORTS = (80, 443)
