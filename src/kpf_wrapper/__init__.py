"""kpf wrapper - supervise kubectl port-forward and ssh tunnels."""

# High-level API
from .api import create_supervisor, managed_tunnel

# Common utilities
from .common.exceptions import (
    AlreadyRunningError,
    BackendError,
    ConfigurationError,
    InvalidInputError,
    KPFWrapperError,
    ProcessError,
    SystemCommandError,
    TunnelNotFoundError,
)
from .common.logging import get_logger, setup_logging, tunnel_context
from .common.process import (
    AsyncCommandExecutor,
    CommandExecutor,
    EventStream,
    ProcessEvent,
    ProcessHandle,
)

# Configuration
from .config import ConfigCache, ConfigService, SupervisorSettings
from .supervisor import TunnelSupervisor

# Tunnels
from .tunnels import (
    ForwardType,
    ProcessInfo,
    ProcessRegistry,
    SystemInterfaceManager,
    TunnelConfig,
    create_detector,
    format_backend_error,
)

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "create_supervisor",
    "managed_tunnel",
    "TunnelSupervisor",
    # Configuration
    "SupervisorSettings",
    "ConfigService",
    "ConfigCache",
    # Tunnels
    "TunnelConfig",
    "ForwardType",
    "ProcessInfo",
    "ProcessRegistry",
    "SystemInterfaceManager",
    "create_detector",
    "format_backend_error",
    # Process execution
    "CommandExecutor",
    "AsyncCommandExecutor",
    "EventStream",
    "ProcessEvent",
    "ProcessHandle",
    # Exceptions
    "KPFWrapperError",
    "ConfigurationError",
    "ProcessError",
    "AlreadyRunningError",
    "SystemCommandError",
    "TunnelNotFoundError",
    "InvalidInputError",
    "BackendError",
    # Utilities
    "get_logger",
    "setup_logging",
    "tunnel_context",
]
