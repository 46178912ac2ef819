"""Loopback alias management for tunnels bound to non-default addresses."""

import sys
from abc import ABC, abstractmethod

from ..common.exceptions import InvalidInputError, SystemCommandError
from ..common.logging import get_logger
from ..common.process import run_command
from ..common.utils import is_standard_address, is_valid_ip, strip_port

logger = get_logger(__name__)


class InterfaceManager(ABC):
    """Makes sure a local bind address exists before a tunnel uses it."""

    @abstractmethod
    def ensure_interface_exists(self, address: str) -> None:
        """Create the address if it is missing.

        Raises:
            SystemCommandError: If the address cannot be created
            InvalidInputError: If the address is malformed
        """


class LoopbackAliasManager(InterfaceManager):
    """Shared flow for platforms that alias extra IPs onto the loopback device.

    Creation is attempted unprivileged first, then through ``sudo -n`` which
    fails instead of prompting. When both fail the error carries the command
    the user has to run by hand.
    """

    @abstractmethod
    def interface_exists(self, address: str) -> bool:
        """Check whether the address is already bound locally."""

    @abstractmethod
    def alias_command(self, address: str) -> list[str]:
        """Command that adds the address as a loopback alias."""

    def ensure_interface_exists(self, address: str) -> None:
        if self.interface_exists(address):
            logger.debug("Interface already present", address=address)
            return
        self.create_interface(address)

    def create_interface(self, address: str) -> None:
        command = self.alias_command(address)
        if self._try_create_without_sudo(command):
            logger.info("Created loopback alias", address=address)
            return
        self._create_with_sudo(address, command)
        logger.info("Created loopback alias with sudo", address=address)

    def _try_create_without_sudo(self, command: list[str]) -> bool:
        try:
            result = run_command(command)
        except SystemCommandError as e:
            logger.debug("Unprivileged alias creation failed", error=str(e))
            return False
        return result.returncode == 0

    def _create_with_sudo(self, address: str, command: list[str]) -> None:
        manual = " ".join(["sudo", *command])
        try:
            result = run_command(["sudo", "-n", *command])
        except SystemCommandError as e:
            raise SystemCommandError(
                f"Failed to create interface {address}: {e}. Please run: '{manual}'",
                remediation=manual,
            ) from e

        if result.returncode == 0:
            return

        stderr = result.stderr.strip()
        logger.warning("Privileged alias creation failed", address=address, stderr=stderr)
        if "password" in stderr or "sudo:" in stderr:
            message = (
                f"Interface {address} requires admin privileges to create. "
                f"Please run: '{manual}'"
            )
        else:
            message = (
                f"Failed to create interface {address}: {stderr}. Please run: '{manual}'"
            )
        raise SystemCommandError(message, remediation=manual)


class LinuxInterfaceManager(LoopbackAliasManager):
    """Uses iproute2 (``ip addr``)."""

    def interface_exists(self, address: str) -> bool:
        result = run_command(["ip", "addr", "show"])
        if result.returncode != 0:
            raise SystemCommandError(
                f"Failed to check interfaces: {result.stderr.strip()}"
            )
        return address in _inet_addresses(result.stdout)

    def alias_command(self, address: str) -> list[str]:
        return ["ip", "addr", "add", f"{address}/32", "dev", "lo"]


class MacosInterfaceManager(LoopbackAliasManager):
    """Uses ``ifconfig lo0 alias``."""

    def interface_exists(self, address: str) -> bool:
        result = run_command(["ifconfig"])
        if result.returncode != 0:
            raise SystemCommandError(
                f"Failed to check interfaces: {result.stderr.strip()}"
            )
        return address in _inet_addresses(result.stdout)

    def alias_command(self, address: str) -> list[str]:
        return ["ifconfig", "lo0", "alias", address]


class WindowsInterfaceManager(InterfaceManager):
    """Alias creation is not supported; only the address syntax is checked."""

    def ensure_interface_exists(self, address: str) -> None:
        if not is_valid_ip(address):
            raise InvalidInputError(f"Invalid IP address: {address}")


class SystemInterfaceManager(InterfaceManager):
    """Dispatches to the manager for the running platform.

    Standard addresses (``127.0.0.1``, ``0.0.0.0``, ``localhost``) are skipped
    and any ``:port`` suffix is ignored.
    """

    def __init__(self, platform: str | None = None):
        self.platform = platform or sys.platform
        self._delegate = self._select(self.platform)

    @staticmethod
    def _select(platform: str) -> InterfaceManager | None:
        if platform.startswith("linux"):
            return LinuxInterfaceManager()
        if platform == "darwin":
            return MacosInterfaceManager()
        if platform == "win32":
            return WindowsInterfaceManager()
        return None

    def ensure_interface_exists(self, address: str) -> None:
        if is_standard_address(address):
            return

        ip = strip_port(address)
        if self._delegate is None:
            raise SystemCommandError(
                f"Interface management not supported on this platform ({self.platform})"
            )
        self._delegate.ensure_interface_exists(ip)


def _inet_addresses(output: str) -> set[str]:
    """Collect addresses from ``inet``/``inet6`` lines of ip or ifconfig output."""
    addresses = set()
    for line in output.splitlines():
        tokens = line.split()
        if len(tokens) < 2 or tokens[0] not in ("inet", "inet6"):
            continue
        address = tokens[1].split("/")[0].split("%")[0]
        # net-tools ifconfig prints "inet addr:10.0.0.1"
        if address.startswith("addr:"):
            address = address[len("addr:"):]
        addresses.add(address)
    return addresses
