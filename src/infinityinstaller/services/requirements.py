"""Host prerequisites checked before an installation touches anything."""

import os
import socket
from typing import Callable, Iterable, Optional

from infinityinstaller.constants import REQUIRED_PORTS
from infinityinstaller.errors import RequirementError
from infinityinstaller.errors_catalog import actionable_error


def is_port_available(port: int, host: str = "localhost") -> bool:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            return True
    except OSError:
        return False


class RequirementsService:
    """Checks root privileges and that the proxy ports are free.

    ``ENV=test`` waives the root check and ``SKIP_PORT_CHECKING=1`` waives
    the port check, so integration runs can install as a normal user next
    to an already-running proxy.
    """

    def __init__(
        self,
        logger,
        console,
        ports: Iterable[int] = REQUIRED_PORTS,
        euid_func: Optional[Callable[[], int]] = None,
        port_check: Callable[[int], bool] = is_port_available,
    ):
        self.logger = logger
        self.console = console
        self.ports = tuple(ports)
        self.euid_func = euid_func or os.geteuid
        self.port_check = port_check

    def check_root_privileges(self):
        if os.environ.get("ENV", "") == "test":
            self.logger.debug("Skipping root check in test environment")
            return
        if self.euid_func() != 0:
            raise RequirementError(actionable_error("root_required"))
        self.logger.debug("Root privileges confirmed")

    def check_port_availability(self):
        if os.environ.get("SKIP_PORT_CHECKING", "") == "1":
            self.logger.warning("Skipping port availability check (SKIP_PORT_CHECKING=1)")
            return

        for port in self.ports:
            if not self.port_check(port):
                raise RequirementError(actionable_error("port_unavailable", port=str(port)))
        self.logger.debug("Ports %s are available", ", ".join(str(port) for port in self.ports))

    def check_system_requirements(self):
        self.console.print("[blue]Performing system checks...[/blue]")
        self.check_root_privileges()
        self.check_port_availability()
        self.console.print("[green]System requirements met.[/green]")
