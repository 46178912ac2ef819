"""Common utilities and shared functionality."""

from .exceptions import (
    AlreadyRunningError,
    BackendError,
    ConfigurationError,
    InvalidInputError,
    KPFWrapperError,
    ProcessError,
    SystemCommandError,
    TunnelNotFoundError,
)
from .logging import get_logger, setup_logging, tunnel_context
from .process import (
    AsyncCommandExecutor,
    CommandExecutor,
    EventKind,
    EventStream,
    ProcessEvent,
    ProcessHandle,
    ProcessOutput,
    kill_process,
    run_command,
)
from .utils import (
    MAX_PORT,
    MIN_PORT,
    mask_sensitive_data,
    sanitize_log_data,
    validate_port,
)

__all__ = [
    # Process execution
    "AsyncCommandExecutor",
    "CommandExecutor",
    "EventKind",
    "EventStream",
    "ProcessEvent",
    "ProcessHandle",
    "ProcessOutput",
    "kill_process",
    "run_command",
    # Exceptions
    "KPFWrapperError",
    "ConfigurationError",
    "ProcessError",
    "AlreadyRunningError",
    "SystemCommandError",
    "TunnelNotFoundError",
    "InvalidInputError",
    "BackendError",
    # Logging
    "get_logger",
    "setup_logging",
    "tunnel_context",
    # Utils
    "validate_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
