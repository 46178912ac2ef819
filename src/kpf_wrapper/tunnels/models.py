"""Tunnel models.

This module defines the tunnel definition, the registry's per-process record
and the documents persisted to disk.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..common.utils import split_bind_address, strip_port, validate_port


class ForwardType(str, Enum):
    """Backend used to realize a tunnel."""

    KUBECTL = "kubectl"
    SSH = "ssh"


class TunnelConfig(BaseModel):
    """Definition of a named tunnel.

    ``ports`` entries are ``"local"`` or ``"local:remote"`` strings.
    ``local_interface`` is an optional bind address, optionally ``ip:port`` where
    the port overrides the local port of every entry.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=1, description="Unique tunnel name")
    context: str = Field(default="", description="kubectl context, empty for current")
    namespace: str = Field(default="", description="Kubernetes namespace")
    service: str = Field(
        min_length=1, description="Kubernetes resource or SSH target (user@host)"
    )
    ports: list[str] = Field(min_length=1, description="Port mappings")
    local_interface: str | None = Field(default=None, description="Bind address")
    forward_type: ForwardType = Field(
        default=ForwardType.KUBECTL, description="Tunnel backend"
    )

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: list[str]) -> list[str]:
        """Reject empty entries and numeric parts outside 1-65535."""
        ports = [port.strip() for port in v]
        if any(not port for port in ports):
            raise ValueError("Port entries cannot be empty")
        for port in ports:
            for part in port.split(":"):
                if part.isdigit():
                    validate_port(int(part), f"Port in '{port}'")
        return ports

    @field_validator("local_interface")
    @classmethod
    def validate_local_interface(cls, v: str | None) -> str | None:
        """Treat a blank interface as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def validate_backend_fields(self) -> "TunnelConfig":
        if self.forward_type == ForwardType.KUBECTL and not self.namespace:
            raise ValueError("Namespace is required for kubectl tunnels")
        return self

    @property
    def bind_address(self) -> str | None:
        """Local interface without any port override."""
        if self.local_interface is None:
            return None
        return strip_port(self.local_interface)

    @property
    def bind_port_override(self) -> str | None:
        """Port forced onto every mapping by ``local_interface``, if any."""
        if self.local_interface is None:
            return None
        return split_bind_address(self.local_interface)[1]

    @property
    def local_ports(self) -> list[int]:
        """Local ports the tunnel will listen on, where they can be parsed."""
        override = self.bind_port_override
        ports = []
        for mapping in self.ports:
            local = override or mapping.split(":")[0]
            if local.isdigit():
                ports.append(int(local))
        return ports

    def with_name(self, name: str) -> "TunnelConfig":
        """Create a copy with a new name (immutable pattern)."""
        return self.model_copy(update={"name": name})


class ProcessInfo(BaseModel):
    """A running tunnel as known to the registry."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(ge=0)
    config: TunnelConfig
    started_at: datetime = Field(default_factory=datetime.now)
    adopted: bool = Field(
        default=False, description="Discovered on the system rather than spawned"
    )

    def to_record(self) -> "ProcessRecord":
        return ProcessRecord(pid=self.pid, config=self.config)


class ProcessRecord(BaseModel):
    """Serializable ``{pid, config}`` pair stored in the state file."""

    pid: int = Field(ge=0)
    config: TunnelConfig

    def to_info(self) -> ProcessInfo:
        return ProcessInfo(pid=self.pid, config=self.config)


class RegistryState(BaseModel):
    """Persisted registry document: ``{"processes": {name: {pid, config}}}``."""

    processes: dict[str, ProcessRecord] = Field(default_factory=dict)


class TunnelConfigs(BaseModel):
    """Tunnel configuration document: ``{"configs": [...]}``."""

    configs: list[TunnelConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "TunnelConfigs":
        seen: set[str] = set()
        for config in self.configs:
            if config.name in seen:
                raise ValueError(f"Duplicate tunnel name '{config.name}'")
            seen.add(config.name)
        return self


class AppConfig(BaseModel):
    """Application settings persisted next to the tunnel definitions."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    kubectl_path: str | None = None
    kubeconfig_path: str | None = None
