"""Domain errors for the Infinity Metrics installer."""


class InstallerError(RuntimeError):
    """Raised when an install, update or restore cannot continue safely."""


class ConfigError(InstallerError):
    """Raised when a configuration value is missing or invalid."""


class BackupError(InstallerError):
    """Raised when a database backup cannot be created, validated or restored."""


class DeploymentError(InstallerError):
    """Raised when containers or the reverse proxy cannot reach the desired state."""


class ReleaseError(InstallerError):
    """Raised when release metadata or the installer binary cannot be obtained."""


class LockError(InstallerError):
    """Raised when another installer run holds the install lock."""


class RequirementError(InstallerError):
    """Raised when the host does not meet the installation prerequisites."""
