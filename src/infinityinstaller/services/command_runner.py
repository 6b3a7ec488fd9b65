"""Subprocess execution service for the installer.

Every external tool (docker, sqlite3) is reached through ``CommandRunner.run``;
services receive the bound method and never import ``subprocess`` themselves.
Retries belong to the callers, which know which failures are transient.
"""

import subprocess
from typing import List, Optional

from infinityinstaller.errors import InstallerError
from infinityinstaller.errors_catalog import actionable_error


def _failure_message(result: subprocess.CompletedProcess, cmd_str: str) -> str:
    message = f"Command failed ({result.returncode}): {cmd_str}"
    stderr = (result.stderr or "").strip()
    if stderr:
        message = f"{message}\n{stderr}"
    return message


class CommandRunner:
    """Runs docker and sqlite3 with one error contract: ``InstallerError`` or a result."""

    def __init__(self, logger):
        self.logger = logger

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run *cmd* and return its result.

        With ``check=True`` a non-zero exit raises ``InstallerError`` carrying
        stderr; with ``check=False`` the result is returned and the caller
        decides how bad the failure is.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                input=input_text,
            )
        except FileNotFoundError as exc:
            raise InstallerError(actionable_error("command_not_found", command=cmd[0])) from exc
        except PermissionError as exc:
            raise InstallerError(f"Permission denied running {cmd[0]}: {exc}") from exc
        except OSError as exc:
            raise InstallerError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        message = _failure_message(result, cmd_str)
        if check:
            raise InstallerError(message)

        self.logger.debug(message)
        return result
