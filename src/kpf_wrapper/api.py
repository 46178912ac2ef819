"""High-level API for the kpf wrapper.

This module provides simple helpers for running a tunnel for the duration of
a block of code.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from .common.exceptions import TunnelNotFoundError
from .common.logging import get_logger
from .common.process import EventStream, ProcessHandle
from .config import SupervisorSettings
from .supervisor import TunnelSupervisor
from .tunnels.models import TunnelConfig

logger = get_logger(__name__)


def create_supervisor(
    config_dir: str | Path | None = None,
    *,
    kubectl_path: str | None = None,
    kubeconfig_path: str | None = None,
) -> TunnelSupervisor:
    """Create a supervisor for the given configuration directory.

    Args:
        config_dir: Directory holding port-forwards.yaml and the state file
        kubectl_path: kubectl binary (auto-detected if None)
        kubeconfig_path: KUBECONFIG override

    Returns:
        TunnelSupervisor: Supervisor with the persisted registry loaded

    Example:
        >>> supervisor = create_supervisor()
        >>> supervisor.list_running()
        []
    """
    settings = {"kubectl_path": kubectl_path, "kubeconfig_path": kubeconfig_path}
    if config_dir is not None:
        settings["config_dir"] = Path(config_dir)
    return TunnelSupervisor(SupervisorSettings(**settings))


@asynccontextmanager
async def managed_tunnel(
    supervisor: TunnelSupervisor,
    config: str | TunnelConfig,
) -> AsyncIterator[tuple[ProcessHandle, EventStream]]:
    """Run a tunnel with automatic cleanup.

    The tunnel is stopped when the context exits, even if an exception occurs.
    A tunnel that already exited and was dropped from the registry is left alone.

    Args:
        supervisor: Supervisor owning the registry
        config: Tunnel name or definition

    Yields:
        Tuple of the process handle and its event stream

    Example:
        >>> async with managed_tunnel(supervisor, "api") as (handle, events):
        ...     print(f"Forwarding with pid {handle.pid}")
        # Tunnel is stopped here
    """
    handle, stream = await supervisor.start(config)
    name = config if isinstance(config, str) else config.name
    logger.info("Managed tunnel started", name=name, pid=handle.pid)

    try:
        yield handle, stream
    finally:
        current = supervisor.registry.get(name)
        if current is not None and current.pid == handle.pid:
            try:
                supervisor.stop(name)
            except TunnelNotFoundError:
                pass
        logger.info("Managed tunnel cleaned up", name=name, pid=handle.pid)
