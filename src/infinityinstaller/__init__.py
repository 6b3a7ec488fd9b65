"""
Infinity Metrics installer - install, update and restore an Infinity Metrics host
"""

__version__ = "1.0.0"

from .core import InfinityInstaller, InstallerError

__all__ = ["InfinityInstaller", "InstallerError"]
