"""Input and URL validation helpers for the installer."""

import re
from urllib.parse import urlparse

from infinityinstaller.errors import ConfigError, ReleaseError
from infinityinstaller.errors_catalog import actionable_error


class ValidationService:
    """Validates configuration fields and download protocol policy."""

    EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
    DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9.-]*[a-zA-Z0-9])?(:\d+)?$")

    def __init__(self, allow_insecure_http: bool = False):
        self.allow_insecure_http = allow_insecure_http

    def is_url(self, location: str) -> bool:
        scheme = urlparse(location).scheme.lower()
        return scheme in {"http", "https"}

    def validate_domain(self, domain: str):
        if not domain:
            raise ConfigError("domain is required")
        if "://" in domain or "/" in domain:
            raise ConfigError(f"domain must be a bare host name, got '{domain}'")
        if not self.DOMAIN_PATTERN.match(domain):
            raise ConfigError(f"invalid domain '{domain}'")

    def validate_email(self, email: str):
        if not email:
            raise ConfigError("admin email is required")
        if not self.EMAIL_PATTERN.match(email):
            raise ConfigError(f"invalid admin email '{email}'")

    def enforce_https_policy(self, location: str, label: str, logger, console):
        if not self.is_url(location):
            raise ReleaseError(f"{label} is not a valid URL: {location}")

        scheme = urlparse(location).scheme.lower()
        if scheme == "http" and not self.allow_insecure_http:
            raise ReleaseError(actionable_error("insecure_http", label=label))

        if scheme == "http" and self.allow_insecure_http:
            logger.warning("Insecure HTTP enabled for %s: %s", label, location)
            console.print(
                f"[yellow]Warning:[/yellow] Using insecure HTTP for {label}. "
                "Prefer HTTPS whenever possible."
            )
