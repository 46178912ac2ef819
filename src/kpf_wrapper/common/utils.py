"""Utility functions for the tunnel supervisor."""

import ipaddress
from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_BIND_ADDRESS = "127.0.0.1"
STANDARD_ADDRESSES = frozenset({"127.0.0.1", "0.0.0.0", "localhost"})


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def parse_port(value: str) -> int | None:
    """Parse a port string, returning None unless it fits in 0-65535."""
    if not value.isdigit():
        return None
    port = int(value)
    if port > MAX_PORT:
        return None
    return port


def split_bind_address(address: str) -> tuple[str, str | None]:
    """Split ``ip:port`` into its parts.

    The suffix only counts as a port when it parses as one; anything else
    comes back whole as the ip part.

    Args:
        address: Bind address, optionally with a ``:port`` suffix

    Returns:
        Tuple of (ip, port or None)
    """
    ip, sep, port = address.rpartition(":")
    if sep and parse_port(port) is not None:
        return ip, port
    return address, None


def strip_port(address: str) -> str:
    """Return the address without any ``:port`` suffix."""
    return split_bind_address(address)[0]


def is_standard_address(address: str) -> bool:
    """Check whether an address is always available without an alias."""
    return strip_port(address) in STANDARD_ADDRESSES


def is_valid_ip(address: str) -> bool:
    """Check if a string is a syntactically valid IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters for debugging.

    Args:
        value: Sensitive string to mask (e.g., secret key, session token)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Sanitized dictionary safe for logging
    """
    sensitive_fields = {
        "token",
        "password",
        "secret",
        "key",
        "access_token",
        "session_token",
    }

    sanitized = {}
    for key, value in data.items():
        if any(sensitive_field in key.lower() for sensitive_field in sensitive_fields):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
