"""Configuration: supervisor settings, tunnel definitions and app settings."""

import os
import shutil
import threading
import time
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .common.exceptions import (
    ConfigurationError,
    InvalidInputError,
    TunnelNotFoundError,
)
from .common.logging import get_logger
from .tunnels.models import AppConfig, TunnelConfig, TunnelConfigs

logger = get_logger(__name__)

APP_DIR_NAME = "easy-kpf"
TUNNELS_FILE_NAME = "port-forwards.yaml"
APP_CONFIG_FILE_NAME = "app-config.yaml"

KUBECTL_DETECTION_PATHS = (
    "/opt/homebrew/bin/kubectl",
    "/usr/local/bin/kubectl",
    "/usr/bin/kubectl",
    "/snap/bin/kubectl",
    "/usr/local/google-cloud-sdk/bin/kubectl",
)


def default_config_dir() -> Path:
    """``$XDG_CONFIG_HOME/easy-kpf``, falling back to ``~/.config/easy-kpf``."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / APP_DIR_NAME


def detect_kubectl_path() -> str:
    """Locate kubectl on PATH or in common install locations."""
    found = shutil.which("kubectl")
    if found:
        return found
    for path in KUBECTL_DETECTION_PATHS:
        if Path(path).exists():
            return path
    return "kubectl"


class SupervisorSettings(BaseModel):
    """Settings for the tunnel supervisor."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    config_dir: Path = Field(
        default_factory=default_config_dir, description="Directory for config and state"
    )
    kubectl_path: str | None = Field(
        default=None, description="kubectl binary (auto-detected if None)"
    )
    kubeconfig_path: str | None = Field(default=None, description="KUBECONFIG override")
    state_file_name: str = Field(
        default="process-state.json", min_length=1, description="Registry state file"
    )
    event_buffer: int = Field(
        default=100, ge=1, le=10000, description="Per-tunnel event queue capacity"
    )
    command_timeout: float = Field(
        default=10.0, gt=0, le=120.0, description="Timeout for OS probe commands"
    )

    @property
    def state_file(self) -> Path:
        return self.config_dir / self.state_file_name


class ConfigService:
    """Loads and saves the YAML files under the config directory."""

    def __init__(self, config_dir: str | Path | None = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()

    @property
    def tunnels_path(self) -> Path:
        return self.config_dir / TUNNELS_FILE_NAME

    @property
    def app_config_path(self) -> Path:
        return self.config_dir / APP_CONFIG_FILE_NAME

    def _read_yaml(self, path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read {path}: {e}") from e

    def _write_yaml(self, path: Path, data: dict[str, Any]) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(
                yaml.safe_dump(data, sort_keys=False, default_flow_style=False),
                encoding="utf-8",
            )
        except OSError as e:
            raise ConfigurationError(f"Failed to write {path}: {e}") from e

    def load_tunnels(self) -> list[TunnelConfig]:
        """Load tunnel definitions, creating an empty file if none exists.

        Raises:
            ConfigurationError: If the file is unreadable or invalid
        """
        path = self.tunnels_path
        if not path.exists():
            self.save_tunnels([])
            return []

        data = self._read_yaml(path) or {}
        try:
            return TunnelConfigs.model_validate(data).configs
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tunnel configuration in {path}: {e}") from e

    def save_tunnels(self, configs: list[TunnelConfig]) -> None:
        try:
            document = TunnelConfigs(configs=configs)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tunnel configuration: {e}") from e
        self._write_yaml(
            self.tunnels_path,
            document.model_dump(mode="json", exclude_none=True),
        )
        logger.debug("Saved tunnel configuration", count=len(configs))

    def load_app_config(self) -> AppConfig:
        path = self.app_config_path
        if not path.exists():
            config = AppConfig()
            self.save_app_config(config)
            return config

        data = self._read_yaml(path) or {}
        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid app configuration in {path}: {e}") from e

    def save_app_config(self, config: AppConfig) -> None:
        self._write_yaml(self.app_config_path, config.model_dump(mode="json"))

    def save_kubectl_path(self, path: str) -> None:
        config = self.load_app_config()
        self.save_app_config(config.model_copy(update={"kubectl_path": path}))

    def save_kubeconfig_path(self, path: str | None) -> None:
        config = self.load_app_config()
        self.save_app_config(config.model_copy(update={"kubeconfig_path": path}))


class ConfigCache:
    """Thread-safe cache of tunnel definitions with a time-to-live."""

    def __init__(self, config_service: ConfigService, ttl: float = 5.0):
        self.config_service = config_service
        self.ttl = ttl
        self._lock = threading.Lock()
        self._configs: list[TunnelConfig] | None = None
        self._loaded_at: float | None = None

    def _is_valid(self) -> bool:
        return (
            self._configs is not None
            and self._loaded_at is not None
            and time.monotonic() - self._loaded_at < self.ttl
        )

    def get_configs(self) -> list[TunnelConfig]:
        with self._lock:
            if not self._is_valid():
                self._configs = self.config_service.load_tunnels()
                self._loaded_at = time.monotonic()
            return list(self._configs or [])

    def invalidate(self) -> None:
        with self._lock:
            self._configs = None
            self._loaded_at = None

    def update_configs(self, configs: list[TunnelConfig]) -> None:
        """Persist configs and refresh the cache."""
        with self._lock:
            self.config_service.save_tunnels(configs)
            self._configs = list(configs)
            self._loaded_at = time.monotonic()

    def find_config(self, name: str) -> TunnelConfig | None:
        return next((c for c in self.get_configs() if c.name == name), None)

    def add_config(self, config: TunnelConfig) -> None:
        """Append a definition.

        Raises:
            ConfigurationError: If the name is already taken
        """
        configs = self.get_configs()
        if any(c.name == config.name for c in configs):
            raise ConfigurationError(f"Configuration '{config.name}' already exists")
        configs.append(config)
        self.update_configs(configs)

    def remove_config(self, name: str) -> None:
        configs = [c for c in self.get_configs() if c.name != name]
        self.update_configs(configs)

    def update_config(self, old_name: str, new_config: TunnelConfig) -> None:
        """Replace a definition in place.

        Raises:
            TunnelNotFoundError: If old_name is unknown
        """
        configs = self.get_configs()
        for index, config in enumerate(configs):
            if config.name == old_name:
                configs[index] = new_config
                self.update_configs(configs)
                return
        raise TunnelNotFoundError(f"Configuration not found for service: {old_name}")

    def reorder_config(self, name: str, new_index: int) -> None:
        """Move a definition to a new position.

        Raises:
            TunnelNotFoundError: If name is unknown
            InvalidInputError: If new_index is out of range
        """
        configs = self.get_configs()
        current = next((i for i, c in enumerate(configs) if c.name == name), None)
        if current is None:
            raise TunnelNotFoundError(f"Configuration not found for service: {name}")
        if not 0 <= new_index < len(configs):
            raise InvalidInputError("Invalid new index")

        configs.insert(new_index, configs.pop(current))
        self.update_configs(configs)
