"""Crash-safe persistence of the process registry."""

import json
import os
from pathlib import Path

from pydantic import ValidationError

from ..common.exceptions import ConfigurationError, SystemCommandError
from ..common.logging import get_logger
from .models import RegistryState

logger = get_logger(__name__)


class StateStore:
    """Reads and atomically writes the registry state file.

    The file is JSON: ``{"processes": {"<name>": {"pid": ..., "config": {...}}}}``.
    Writes go to a sibling ``.tmp`` file which is then renamed over the real
    path, so a crash never leaves a partially written state file behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @property
    def temp_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".tmp")

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> RegistryState:
        """Load the last persisted state.

        Returns:
            The stored state, or an empty state if the file does not exist

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        if not self.path.exists():
            logger.debug("No existing state file", path=str(self.path))
            return RegistryState()

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to read state file {self.path}: {e}") from e

        if not content.strip():
            return RegistryState()

        try:
            return RegistryState.model_validate_json(content)
        except ValidationError as e:
            raise ConfigurationError(
                f"Failed to deserialize state file {self.path}: {e}"
            ) from e

    def write(self, state: RegistryState) -> None:
        """Persist state atomically.

        Raises:
            SystemCommandError: If the file cannot be written; the previous file
                is left intact
        """
        payload = json.dumps(state.model_dump(mode="json"), indent=2)
        temp_path = self.temp_path
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            logger.error("Failed to persist state", path=str(self.path), error=str(e))
            raise SystemCommandError(f"Failed to write state file {self.path}: {e}") from e

        logger.debug(
            "Saved registry state", path=str(self.path), entries=len(state.processes)
        )
