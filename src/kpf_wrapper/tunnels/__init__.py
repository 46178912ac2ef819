"""Tunnel commands, probes and the process registry."""

from .commands import (
    KubectlCommandBuilder,
    SshCommandBuilder,
    TunnelCommand,
    build_command,
    build_port_mappings,
    format_backend_error,
)
from .detector import (
    ProcessDetector,
    UnixProcessDetector,
    WindowsProcessDetector,
    create_detector,
)
from .models import (
    AppConfig,
    ForwardType,
    ProcessInfo,
    ProcessRecord,
    RegistryState,
    TunnelConfig,
    TunnelConfigs,
)
from .network import (
    InterfaceManager,
    LinuxInterfaceManager,
    MacosInterfaceManager,
    SystemInterfaceManager,
    WindowsInterfaceManager,
)
from .registry import ProcessRegistry
from .state import StateStore

__all__ = [
    "KubectlCommandBuilder",
    "SshCommandBuilder",
    "TunnelCommand",
    "build_command",
    "build_port_mappings",
    "format_backend_error",
    "ProcessDetector",
    "UnixProcessDetector",
    "WindowsProcessDetector",
    "create_detector",
    "AppConfig",
    "ForwardType",
    "ProcessInfo",
    "ProcessRecord",
    "RegistryState",
    "TunnelConfig",
    "TunnelConfigs",
    "InterfaceManager",
    "LinuxInterfaceManager",
    "MacosInterfaceManager",
    "SystemInterfaceManager",
    "WindowsInterfaceManager",
    "ProcessRegistry",
    "StateStore",
]
