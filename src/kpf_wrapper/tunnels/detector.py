"""Process probes: liveness by pid and discovery of unmanaged tunnels.

Discovery is a textual heuristic over ``ps aux`` command lines, not an exact
argument match. Two tunnels whose namespace, service and a port overlap look
the same to it. A /proc or platform API based probe would be more precise.
"""

import sys
from abc import ABC, abstractmethod

from ..common.exceptions import SystemCommandError
from ..common.logging import get_logger
from ..common.process import run_command
from .commands import build_port_mappings
from .models import ForwardType, TunnelConfig

logger = get_logger(__name__)


class ProcessDetector(ABC):
    """Read-only queries about OS processes."""

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Check whether a process with this pid exists.

        Raises:
            SystemCommandError: If the probe itself cannot run
        """

    @abstractmethod
    def process_table(self) -> list[str]:
        """Return one line per running process, in ``ps aux`` layout."""

    @staticmethod
    def extract_pid(line: str) -> int | None:
        """Pull the pid out of a ``ps aux`` line (second column)."""
        parts = line.split()
        if len(parts) >= 2 and parts[1].isdigit():
            return int(parts[1])
        return None

    def matches(self, line: str, config: TunnelConfig) -> bool:
        """Check whether a process line looks like the tunnel described by config."""
        if config.forward_type == ForwardType.SSH:
            return matches_ssh_command(line, config)
        return matches_kubectl_command(line, config)

    def matches_running_kubectl(self, config: TunnelConfig) -> bool:
        """Check for an unmanaged ``kubectl port-forward`` matching config."""
        if config.forward_type != ForwardType.KUBECTL:
            return False
        return any(matches_kubectl_command(line, config) for line in self.process_table())

    def find_pid(
        self, config: TunnelConfig, table: list[str] | None = None
    ) -> int | None:
        """Find the pid of the first running process matching config.

        Args:
            config: Tunnel definition to look for
            table: Process lines to scan (read fresh when None)
        """
        lines = self.process_table() if table is None else table
        for line in lines:
            if self.matches(line, config):
                pid = self.extract_pid(line)
                if pid is not None:
                    return pid
        return None

    def is_running(self, config: TunnelConfig, table: list[str] | None = None) -> bool:
        """Check for any running process matching config, whatever its backend."""
        return self.find_pid(config, table) is not None


class UnixProcessDetector(ProcessDetector):
    """Probes using ``ps`` on Linux and macOS."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def is_alive(self, pid: int) -> bool:
        result = run_command(["ps", "-p", str(pid)], timeout=self.timeout)
        return result.returncode == 0

    def process_table(self) -> list[str]:
        result = run_command(["ps", "aux"], timeout=self.timeout)
        if result.returncode != 0:
            raise SystemCommandError(
                f"Failed to list processes: {result.stderr.strip()}"
            )
        # first line is the column header
        return result.stdout.splitlines()[1:]


class WindowsProcessDetector(ProcessDetector):
    """Probes using ``tasklist``.

    tasklist does not expose command lines, so orphan discovery finds nothing.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def is_alive(self, pid: int) -> bool:
        result = run_command(
            ["tasklist", "/FI", f"PID eq {pid}"], timeout=self.timeout
        )
        return str(pid) in result.stdout.split()

    def process_table(self) -> list[str]:
        logger.debug("Process command lines unavailable on Windows")
        return []


def create_detector(platform: str | None = None, timeout: float = 10.0) -> ProcessDetector:
    """Return the detector for the given (or running) platform.

    Raises:
        SystemCommandError: If the platform is not supported
    """
    platform = platform or sys.platform
    if platform == "win32":
        return WindowsProcessDetector(timeout=timeout)
    if platform.startswith("linux") or platform == "darwin" or "bsd" in platform:
        return UnixProcessDetector(timeout=timeout)
    raise SystemCommandError(
        f"Process verification not supported on this platform ({platform})"
    )


def matches_namespace(line: str, namespace: str) -> bool:
    return (
        f"-n {namespace}" in line
        or f"--namespace={namespace}" in line
        or f"--namespace {namespace}" in line
    )


def matches_kubectl_command(line: str, config: TunnelConfig) -> bool:
    """Substring match of a process line against a kubectl tunnel definition."""
    if "kubectl" not in line or "port-forward" not in line:
        return False
    if not matches_namespace(line, config.namespace):
        return False
    if config.service not in line:
        return False
    return any(port in line for port in config.ports)


def matches_ssh_command(line: str, config: TunnelConfig) -> bool:
    """Substring match of a process line against an ssh tunnel definition."""
    if "ssh" not in line or "-L" not in line:
        return False
    if config.service not in line:
        return False
    forwards = build_port_mappings(config.ports, config.local_interface)
    return any(forward in line for forward in forwards)
