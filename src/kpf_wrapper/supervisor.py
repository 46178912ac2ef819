"""Tunnel supervisor: start, stop and reconcile tunnel processes."""

import os
import sys
from collections.abc import Awaitable, Callable

from .common.exceptions import (
    AlreadyRunningError,
    BackendError,
    ConfigurationError,
    ProcessError,
    TunnelNotFoundError,
)
from .common.logging import get_logger, tunnel_context
from .common.process import (
    AsyncCommandExecutor,
    CommandExecutor,
    EventKind,
    EventStream,
    ProcessEvent,
    ProcessHandle,
    kill_process,
)
from .config import (
    ConfigCache,
    ConfigService,
    SupervisorSettings,
    detect_kubectl_path,
)
from .tunnels.commands import TunnelCommand, build_command, format_backend_error
from .tunnels.detector import ProcessDetector, create_detector
from .tunnels.models import AppConfig, ForwardType, ProcessInfo, TunnelConfig
from .tunnels.network import InterfaceManager, SystemInterfaceManager
from .tunnels.registry import ProcessRegistry

logger = get_logger(__name__)

PRIVILEGED_PORT_LIMIT = 1024

EventCallback = Callable[[str, ProcessEvent], Awaitable[None] | None]


class TunnelSupervisor:
    """Owns the process registry and every operation front ends need.

    The supervisor is an explicit object handed to whichever front end uses it;
    there is no module level instance.
    """

    def __init__(
        self,
        settings: SupervisorSettings | None = None,
        *,
        config_service: ConfigService | None = None,
        config_cache: ConfigCache | None = None,
        detector: ProcessDetector | None = None,
        registry: ProcessRegistry | None = None,
        executor: CommandExecutor | None = None,
        interface_manager: InterfaceManager | None = None,
        killer: Callable[[int], None] = kill_process,
    ):
        """Initialize the supervisor and load the persisted registry.

        Args:
            settings: Supervisor settings (defaults if None)
            config_service: Reader/writer of the YAML config files
            config_cache: Cache of tunnel definitions
            detector: Process probes (platform default if None)
            registry: Process registry (loaded from the state file if None)
            executor: Spawn boundary (asyncio subprocesses if None)
            interface_manager: Loopback alias manager (platform default if None)
            killer: Function sending a termination signal to a pid
        """
        self.settings = settings or SupervisorSettings()
        self.config_service = config_service or ConfigService(self.settings.config_dir)
        self.config_cache = config_cache or ConfigCache(self.config_service)
        self.detector = detector or create_detector(
            timeout=self.settings.command_timeout
        )
        if registry is None:
            registry = ProcessRegistry.load(self.settings.state_file, self.detector)
        self.registry = registry
        self.executor = executor or AsyncCommandExecutor(self.settings.event_buffer)
        self.interface_manager = interface_manager or SystemInterfaceManager()
        self._kill = killer
        logger.info(
            "Initialized TunnelSupervisor",
            config_dir=str(self.settings.config_dir),
            running=len(self.registry),
        )

    def _app_config(self) -> AppConfig:
        try:
            return self.config_service.load_app_config()
        except ConfigurationError as e:
            logger.warning("Failed to load app configuration", error=str(e))
            return AppConfig()

    def kubectl_path(self) -> str:
        """Resolve kubectl: settings, then app config, then auto-detection."""
        if self.settings.kubectl_path:
            return self.settings.kubectl_path
        return self._app_config().kubectl_path or detect_kubectl_path()

    def kubeconfig_path(self) -> str | None:
        if self.settings.kubeconfig_path:
            return self.settings.kubeconfig_path
        return self._app_config().kubeconfig_path

    def _resolve_config(self, tunnel: str | TunnelConfig) -> TunnelConfig:
        if isinstance(tunnel, TunnelConfig):
            return tunnel
        config = self.config_cache.find_config(tunnel)
        if config is None:
            raise TunnelNotFoundError(f"Configuration not found for service: {tunnel}")
        return config

    def build_command(self, config: TunnelConfig) -> TunnelCommand:
        if config.forward_type == ForwardType.SSH:
            return build_command(config)
        return build_command(config, self.kubectl_path(), self.kubeconfig_path())

    @staticmethod
    def _check_privileged_ports(config: TunnelConfig) -> None:
        if sys.platform == "win32" or os.geteuid() == 0:
            return
        privileged = [p for p in config.local_ports if p < PRIVILEGED_PORT_LIMIT]
        if privileged:
            ports = ", ".join(str(p) for p in privileged)
            raise ProcessError(
                f"Port(s) {ports} require root privileges. "
                f"Run with sudo or use ports >= {PRIVILEGED_PORT_LIMIT}."
            )

    async def start(
        self, tunnel: str | TunnelConfig
    ) -> tuple[ProcessHandle, EventStream]:
        """Start a tunnel.

        Args:
            tunnel: Tunnel name (looked up in the config file) or definition

        Returns:
            Handle of the spawned process and its event stream

        Raises:
            TunnelNotFoundError: If a name is given that has no definition
            AlreadyRunningError: If the tunnel is already registered
            SystemCommandError: If the bind address cannot be created, or the
                registry cannot be persisted after the spawn
            InvalidInputError: If the bind address is malformed
            ProcessError: If the process cannot be spawned
        """
        config = self._resolve_config(tunnel)

        if self.registry.contains(config.name):
            logger.warning("Tunnel already running", name=config.name)
            raise AlreadyRunningError(config.name)

        self._check_privileged_ports(config)
        command = self.build_command(config)

        if config.local_interface is not None:
            self.interface_manager.ensure_interface_exists(config.local_interface)

        logger.info(
            "Starting tunnel",
            name=config.name,
            forward_type=config.forward_type.value,
            command=command.command_line(),
        )
        handle, stream = await self.executor.spawn(
            command.program, command.args, command.env
        )

        try:
            self.registry.add(config.name, handle.pid, config)
        except AlreadyRunningError:
            # another start of the same name completed while this one was spawning
            self._kill_quietly(handle.pid)
            raise

        logger.info("Tunnel started", name=config.name, pid=handle.pid)
        return handle, stream

    def stop(self, name: str) -> ProcessInfo:
        """Stop a running tunnel.

        The registry entry is removed before the kill signal is sent and is not
        restored if the kill fails.

        Raises:
            TunnelNotFoundError: If the tunnel is not running
            ProcessError: If the kill signal fails
        """
        info = self.registry.remove(name)
        self._kill(info.pid)
        logger.info("Stopped tunnel", name=name, pid=info.pid)
        return info

    def kill_process(self, pid: int) -> None:
        """Send a termination signal to pid.

        Raises:
            ProcessError: If the kill command fails
        """
        self._kill(pid)

    def _kill_quietly(self, pid: int) -> None:
        try:
            self._kill(pid)
        except ProcessError as e:
            logger.warning("Failed to kill process", pid=pid, error=str(e))

    def is_running(self, name: str) -> bool:
        return self.registry.contains(name)

    def list_running(self) -> list[str]:
        return self.registry.names()

    def list_running_with_pids(self) -> dict[str, int]:
        return self.registry.pids()

    def verify(self) -> list[tuple[str, bool]]:
        """Re-probe every running tunnel and prune the dead ones."""
        results = self.registry.verify()
        logger.debug("Verified tunnels", results=results)
        return results

    def verify_and_update(self) -> list[str]:
        """Verify and return the names of tunnels found dead."""
        return [name for name, alive in self.verify() if not alive]

    def _find_orphans(self) -> list[tuple[TunnelConfig, int]]:
        table = self.detector.process_table()
        orphans = []
        for config in self.config_cache.get_configs():
            if self.registry.contains(config.name):
                continue
            pid = self.detector.find_pid(config, table)
            if pid is not None:
                orphans.append((config, pid))
        return orphans

    def detect_orphans(self) -> list[str]:
        """Names of configured tunnels running outside the registry."""
        names = [config.name for config, _ in self._find_orphans()]
        if names:
            logger.info("Detected unmanaged tunnels", names=names)
        return names

    def adopt_orphans(self) -> list[str]:
        """Register every detected unmanaged tunnel under its configured name."""
        adopted = []
        for config, pid in self._find_orphans():
            try:
                self.registry.add(config.name, pid, config, adopted=True)
            except AlreadyRunningError:
                continue
            adopted.append(config.name)
        if adopted:
            logger.info("Adopted unmanaged tunnels", names=adopted)
        return adopted

    def _check_name_free(self, old_name: str, new_name: str) -> None:
        if old_name != new_name and self.config_cache.find_config(new_name) is not None:
            raise ConfigurationError(f"Configuration '{new_name}' already exists")

    def rename(self, old_name: str, new_name: str) -> ProcessInfo:
        """Rename a running tunnel and its stored definition.

        Raises:
            TunnelNotFoundError: If old_name is not running
            AlreadyRunningError: If new_name is already running
            ConfigurationError: If another definition is already named new_name
        """
        self._check_name_free(old_name, new_name)
        info = self.registry.rename(old_name, new_name)
        stored = self.config_cache.find_config(old_name)
        if stored is not None and old_name != new_name:
            try:
                self.config_cache.update_config(old_name, stored.with_name(new_name))
            except ConfigurationError:
                self.registry.rename(new_name, old_name)
                raise
        return info

    def update_config(self, old_name: str, new_config: TunnelConfig) -> None:
        """Replace a stored definition.

        A running tunnel may only change its name.

        Raises:
            ProcessError: If a running tunnel would change anything but its name
            TunnelNotFoundError: If old_name has no definition
            ConfigurationError: If another definition already has the new name
        """
        self._check_name_free(old_name, new_config.name)
        running = self.registry.get(old_name)
        if running is not None:
            if running.config.with_name(new_config.name) != new_config:
                raise ProcessError(
                    f"{old_name} is running; stop it before changing its configuration"
                )
            if old_name != new_config.name:
                self.registry.rename(old_name, new_config.name)
        self.config_cache.update_config(old_name, new_config)

    def cleanup_all(self) -> list[int]:
        """Drain the registry and kill every tunnel process.

        Kill failures are logged, not raised.

        Returns:
            Pids that were registered
        """
        pids = self.registry.cleanup_all()
        for pid in pids:
            self._kill_quietly(pid)
        logger.info("Cleaned up all tunnels", count=len(pids))
        return pids

    async def monitor(
        self,
        name: str,
        handle: ProcessHandle,
        stream: EventStream,
        on_event: EventCallback | None = None,
    ) -> int | None:
        """Consume a tunnel's event stream until the process exits.

        Output lines are logged and passed to on_event. When the process
        terminates its registry entry is dropped, provided it still points
        at this pid.

        Returns:
            The exit code
        """
        exit_code = None
        with tunnel_context(name, handle.pid):
            async for event in stream:
                if event.kind is EventKind.STDOUT:
                    logger.debug("Tunnel output", line=event.line)
                elif event.kind in (EventKind.STDERR, EventKind.ERROR):
                    logger.warning("Tunnel error output", line=event.line)
                else:
                    exit_code = event.exit_code
                    logger.info("Tunnel exited", exit_code=exit_code)
                    self._forget(name, handle.pid)

                if on_event is not None:
                    result = on_event(name, event)
                    if result is not None:
                        await result

        return exit_code

    def _forget(self, name: str, pid: int) -> None:
        current = self.registry.get(name)
        if current is None or current.pid != pid:
            return
        try:
            self.registry.remove(name)
        except TunnelNotFoundError:
            pass

    async def check_kubectl(self) -> str:
        """Run ``kubectl version --client``.

        Returns:
            kubectl's version output

        Raises:
            BackendError: If kubectl reports a failure
        """
        kubectl = self.kubectl_path()
        kubeconfig = self.kubeconfig_path()
        env = {"KUBECONFIG": kubeconfig} if kubeconfig else None
        output = await self.executor.execute(kubectl, ["version", "--client"], env)
        if not output.success:
            hint = format_backend_error(output.stderr)
            raise BackendError(
                f"kubectl check failed: {output.stderr.strip()}", hint=hint
            )
        return output.stdout.strip()
