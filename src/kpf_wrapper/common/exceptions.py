"""Custom exceptions for the tunnel supervisor."""


class KPFWrapperError(Exception):
    """Base exception for all kpf wrapper errors."""
    pass


class ConfigurationError(KPFWrapperError):
    """Raised when a configuration or state file cannot be loaded or is invalid."""
    pass


class ProcessError(KPFWrapperError):
    """Raised when spawning or killing a tunnel process fails."""
    pass


class AlreadyRunningError(ProcessError):
    """Raised when starting a tunnel whose name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} port forwarding is already running")


class SystemCommandError(KPFWrapperError):
    """Raised when an OS level operation fails.

    Covers loopback alias creation, liveness probing and state persistence.
    ``remediation`` holds a command the user can run manually, if one exists.
    """

    def __init__(self, message: str, remediation: str | None = None):
        self.remediation = remediation
        super().__init__(message)


class TunnelNotFoundError(KPFWrapperError):
    """Raised when a tunnel name is unknown."""
    pass


class InvalidInputError(KPFWrapperError):
    """Raised for malformed addresses or indexes."""
    pass


class BackendError(KPFWrapperError):
    """Raised when kubectl or ssh itself reports a failure."""

    def __init__(self, message: str, hint: str | None = None):
        self.hint = hint
        super().__init__(message)
