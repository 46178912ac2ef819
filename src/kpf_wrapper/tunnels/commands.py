"""Command builders for kubectl and ssh tunnels."""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ..common.logging import get_logger
from ..common.utils import (
    DEFAULT_BIND_ADDRESS,
    sanitize_log_data,
    split_bind_address,
    strip_port,
)
from .models import ForwardType, TunnelConfig

logger = get_logger(__name__)

# Where credential plugins (gke-gcloud-auth-plugin, aws-iam-authenticator, ...)
# usually live. Desktop launches do not inherit the login shell PATH.
CREDENTIAL_PLUGIN_DIRS = (
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "/opt/homebrew/sbin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
)
HOME_PLUGIN_DIRS = (
    ".local/bin",
    "bin",
    "google-cloud-sdk/bin",
    ".krew/bin",
)

CREDENTIAL_ENV_VARS = (
    # Google Cloud
    "GOOGLE_APPLICATION_CREDENTIALS",
    "CLOUDSDK_CONFIG",
    "CLOUDSDK_ACTIVE_CONFIG_NAME",
    # AWS
    "AWS_PROFILE",
    "AWS_DEFAULT_PROFILE",
    "AWS_CONFIG_FILE",
    "AWS_SHARED_CREDENTIALS_FILE",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    # Azure
    "AZURE_CONFIG_DIR",
    # Generic
    "USER",
    "SHELL",
)

SSH_OPTIONS = (
    "-N",
    "-o",
    "BatchMode=yes",
    "-o",
    "StrictHostKeyChecking=no",
    "-o",
    "ConnectTimeout=10",
    "-o",
    "ServerAliveInterval=60",
    "-o",
    "ServerAliveCountMax=3",
)


class TunnelCommand(BaseModel):
    """Program, argument vector and extra environment for one tunnel."""

    model_config = ConfigDict(frozen=True)

    program: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    def command_line(self) -> str:
        return " ".join([self.program, *self.args])


def build_path_env(environ: Mapping[str, str] | None = None) -> str:
    """Build a PATH that also covers common credential plugin locations.

    Args:
        environ: Environment to read PATH and HOME from (defaults to os.environ)

    Returns:
        Current PATH followed by every plugin directory that exists on disk
    """
    environ = os.environ if environ is None else environ
    paths = []

    current_path = environ.get("PATH")
    if current_path:
        paths.append(current_path)

    paths.extend(path for path in CREDENTIAL_PLUGIN_DIRS if Path(path).exists())

    home = environ.get("HOME")
    if home:
        for relative in HOME_PLUGIN_DIRS:
            path = Path(home) / relative
            if path.exists():
                paths.append(str(path))

    return os.pathsep.join(paths)


def credential_env(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment variables kubectl credential plugins need."""
    environ = os.environ if environ is None else environ
    env = {"PATH": build_path_env(environ)}

    if "HOME" in environ:
        env["HOME"] = environ["HOME"]

    for var in CREDENTIAL_ENV_VARS:
        if var in environ:
            env[var] = environ[var]

    return env


class KubectlCommandBuilder:
    """Builds ``kubectl port-forward`` invocations."""

    def __init__(
        self,
        kubectl_path: str = "kubectl",
        kubeconfig_path: str | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.kubectl_path = kubectl_path
        self.kubeconfig_path = kubeconfig_path
        self._environ = environ

    def build_args(self, config: TunnelConfig) -> list[str]:
        args: list[str] = []

        if config.context:
            args.extend(["--context", config.context])

        args.extend(["-n", config.namespace, "port-forward", config.service])

        if config.local_interface is not None:
            args.extend(["--address", strip_port(config.local_interface)])

        args.extend(config.ports)
        return args

    def build_env(self) -> dict[str, str]:
        env = credential_env(self._environ)
        if self.kubeconfig_path:
            env["KUBECONFIG"] = self.kubeconfig_path
        return env

    def build_port_forward_command(self, config: TunnelConfig) -> TunnelCommand:
        """Build the port-forward command for a kubectl tunnel.

        Args:
            config: Tunnel definition

        Returns:
            TunnelCommand with kubectl path, arguments and credential environment
        """
        command = TunnelCommand(
            program=self.kubectl_path,
            args=self.build_args(config),
            env=self.build_env(),
        )
        logger.debug(
            "Built kubectl command",
            name=config.name,
            args=command.args,
            env=sanitize_log_data(command.env),
        )
        return command


def build_port_mappings(ports: list[str], local_interface: str | None) -> list[str]:
    """Translate port entries into ``ssh -L`` forward specifications.

    ``local_interface`` is a bare bind IP or ``ip:port``; the port, when present,
    replaces the local port of every mapping. Entries with more than one colon
    are passed through as ``bindIp:<entry>``.

    Examples:
        >>> build_port_mappings(["8080"], None)
        ['127.0.0.1:8080:localhost:8080']
        >>> build_port_mappings(["8080:80"], "127.0.0.2:9090")
        ['127.0.0.2:9090:localhost:80']
    """
    if local_interface is None:
        bind_ip, port_override = DEFAULT_BIND_ADDRESS, None
    else:
        bind_ip, port_override = split_bind_address(local_interface)

    return [
        _format_port_mapping(mapping, bind_ip, port_override) for mapping in ports
    ]


def _format_port_mapping(mapping: str, bind_ip: str, port_override: str | None) -> str:
    parts = mapping.split(":")

    if len(parts) == 1:
        local_port = port_override or parts[0]
        return f"{bind_ip}:{local_port}:localhost:{parts[0]}"

    if len(parts) == 2:
        local_port = port_override or parts[0]
        return f"{bind_ip}:{local_port}:localhost:{parts[1]}"

    return f"{bind_ip}:{mapping}"


class SshCommandBuilder:
    """Builds ``ssh -N -L ...`` invocations."""

    program = "ssh"

    def build_args(self, config: TunnelConfig) -> list[str]:
        args = list(SSH_OPTIONS)
        for forward in build_port_mappings(config.ports, config.local_interface):
            args.extend(["-L", forward])
        args.append(config.service)
        return args

    def build_port_forward_command(self, config: TunnelConfig) -> TunnelCommand:
        """Build the local-forward command for an SSH tunnel.

        ``config.service`` is the SSH target (``user@host`` or ``host``).
        """
        command = TunnelCommand(program=self.program, args=self.build_args(config))
        logger.debug("Built ssh command", name=config.name, args=command.args)
        return command


def build_command(
    config: TunnelConfig,
    kubectl_path: str = "kubectl",
    kubeconfig_path: str | None = None,
) -> TunnelCommand:
    """Build the command for a tunnel according to its backend."""
    if config.forward_type == ForwardType.SSH:
        return SshCommandBuilder().build_port_forward_command(config)
    return KubectlCommandBuilder(
        kubectl_path, kubeconfig_path
    ).build_port_forward_command(config)


def format_backend_error(error: str, forward_type: ForwardType = ForwardType.KUBECTL) -> str:
    """Turn raw kubectl/ssh error output into actionable guidance.

    Args:
        error: stderr text reported by the backend
        forward_type: Backend that produced the text

    Returns:
        A human readable hint
    """
    error_lower = error.lower()

    if forward_type == ForwardType.SSH:
        if "permission denied" in error_lower:
            return (
                "SSH authentication failed. Load your key with ssh-add; "
                "password prompts are disabled for background tunnels."
            )
        if "could not resolve hostname" in error_lower:
            return "SSH host could not be resolved. Check the target host name."
        if "connection refused" in error_lower or "timed out" in error_lower:
            return "Unable to reach SSH server. Check the host and that sshd is running."
        if "address already in use" in error_lower:
            return "Local port already in use. Stop the other listener or pick another port."
        return f"ssh error: {error}"

    if "unable to connect" in error_lower or "connection refused" in error_lower:
        return (
            "Unable to connect to cluster. "
            "Check your internet connection and cluster status."
        )
    if "unauthorized" in error_lower or "forbidden" in error_lower:
        return (
            "Authentication failed. For GKE clusters, run: "
            "gcloud auth application-default login"
        )
    if "token" in error_lower and "expired" in error_lower:
        return (
            "Authentication token expired. For GKE clusters, run: "
            "gcloud auth application-default login"
        )
    if "gke-gcloud-auth-plugin" in error_lower or "gke_gcloud_auth_plugin" in error_lower:
        return (
            "GKE auth plugin required. Run: "
            "gcloud components install gke-gcloud-auth-plugin"
        )
    if "no cluster" in error_lower or "context" in error_lower:
        return (
            "No active kubectl context found. Configure kubectl with: "
            "kubectl config use-context <context-name>"
        )
    if "address already in use" in error_lower:
        return "Local port already in use. Stop the other listener or pick another port."
    return f"kubectl error: {error}"
