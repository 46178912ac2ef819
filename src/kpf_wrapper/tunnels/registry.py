"""Process registry: the persisted map of running tunnels."""

import threading
from datetime import datetime
from pathlib import Path

from ..common.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    SystemCommandError,
    TunnelNotFoundError,
)
from ..common.logging import get_logger
from .detector import ProcessDetector
from .models import ProcessInfo, RegistryState, TunnelConfig
from .state import StateStore

logger = get_logger(__name__)


class ProcessRegistry:
    """Named map of running tunnels, mirrored to a state file on every change.

    Every mutation holds a single lock for both the map update and the write
    of the state file. If the write fails the in-memory change stays applied
    and the error is raised; the previous file remains intact and the next
    successful write brings it up to date.
    """

    def __init__(
        self,
        state_file: str | Path | None = None,
        detector: ProcessDetector | None = None,
    ):
        """Initialize an empty registry.

        Args:
            state_file: Where to persist the registry (None keeps it in memory)
            detector: Liveness probe used by load and verify
        """
        self._processes: dict[str, ProcessInfo] = {}
        self._lock = threading.Lock()
        self._store = StateStore(state_file) if state_file is not None else None
        self._detector = detector

    @classmethod
    def load(
        cls,
        state_file: str | Path,
        detector: ProcessDetector,
    ) -> "ProcessRegistry":
        """Create a registry from the last persisted state.

        Unreadable state is logged and treated as empty.
        """
        registry = cls(state_file, detector)
        try:
            registry.load_state()
        except ConfigurationError as e:
            logger.warning("Failed to load process registry state", error=str(e))
        return registry

    @property
    def state_file(self) -> Path | None:
        return self._store.path if self._store else None

    def load_state(self) -> tuple[int, int]:
        """Replace the in-memory map with the live entries of the state file.

        Entries whose pid is no longer alive are discarded.

        Returns:
            Tuple of (kept, discarded) counts

        Raises:
            ConfigurationError: If the state file cannot be parsed
        """
        if self._store is None:
            return 0, 0

        state = self._store.read()
        kept: dict[str, ProcessInfo] = {}
        discarded = 0

        for name, record in state.processes.items():
            if self._probe_alive(record.pid):
                kept[name] = record.to_info()
            else:
                logger.debug("Skipping dead process", name=name, pid=record.pid)
                discarded += 1

        with self._lock:
            self._processes = kept

        logger.info(
            "Loaded active processes from state file",
            kept=len(kept),
            discarded=discarded,
        )
        return len(kept), discarded

    def _probe_alive(self, pid: int) -> bool:
        if self._detector is None:
            return True
        try:
            return self._detector.is_alive(pid)
        except SystemCommandError as e:
            logger.warning("Liveness probe failed", pid=pid, error=str(e))
            return False

    def _persist(self) -> None:
        """Write the full map; caller must hold the lock."""
        if self._store is None:
            return
        state = RegistryState(
            processes={name: info.to_record() for name, info in self._processes.items()}
        )
        self._store.write(state)

    def add(
        self, name: str, pid: int, config: TunnelConfig, adopted: bool = False
    ) -> ProcessInfo:
        """Register a running process under a name.

        Raises:
            AlreadyRunningError: If the name is already registered
            SystemCommandError: If persisting fails (entry stays registered)
        """
        with self._lock:
            if name in self._processes:
                raise AlreadyRunningError(name)
            info = ProcessInfo(
                pid=pid,
                config=config,
                started_at=datetime.now(),
                adopted=adopted,
            )
            self._processes[name] = info
            self._persist()

        logger.info("Registered process", name=name, pid=pid, adopted=adopted)
        return info

    def remove(self, name: str) -> ProcessInfo:
        """Unregister a name and return its process info.

        Raises:
            TunnelNotFoundError: If the name is not registered
            SystemCommandError: If persisting fails (entry stays removed)
        """
        with self._lock:
            if name not in self._processes:
                raise TunnelNotFoundError(f"{name} port forwarding is not running")
            info = self._processes.pop(name)
            self._persist()

        logger.info("Unregistered process", name=name, pid=info.pid)
        return info

    def rename(self, old_name: str, new_name: str) -> ProcessInfo:
        """Move an entry to a new name and update its embedded config.

        Raises:
            TunnelNotFoundError: If old_name is not registered
            AlreadyRunningError: If new_name is already registered
        """
        with self._lock:
            if old_name not in self._processes:
                raise TunnelNotFoundError(f"{old_name} port forwarding is not running")
            if old_name == new_name:
                return self._processes[old_name]
            if new_name in self._processes:
                raise AlreadyRunningError(new_name)

            info = self._processes.pop(old_name)
            renamed = info.model_copy(update={"config": info.config.with_name(new_name)})
            self._processes[new_name] = renamed
            self._persist()

        logger.info("Renamed process", old_name=old_name, new_name=new_name)
        return renamed

    def drain(self) -> list[ProcessInfo]:
        """Remove every entry and persist an empty map.

        Returns:
            The removed entries, so the caller can kill their pids
        """
        with self._lock:
            drained = list(self._processes.values())
            self._processes.clear()
            self._persist()

        logger.info("Drained process registry", count=len(drained))
        return drained

    def cleanup_all(self) -> list[int]:
        """Drain the registry and return every pid it held."""
        return [info.pid for info in self.drain()]

    def verify(self) -> list[tuple[str, bool]]:
        """Re-probe every entry and prune the dead ones.

        Probes run outside the lock; an entry is only pruned if it still has
        the pid that was probed.

        Returns:
            List of (name, alive) for every entry that was registered
        """
        if self._detector is None:
            raise SystemCommandError("No process detector configured")

        snapshot = self.items()
        results: list[tuple[str, bool]] = []
        dead: list[tuple[str, int]] = []

        for name, info in snapshot:
            alive = self._detector.is_alive(info.pid)
            results.append((name, alive))
            if not alive:
                dead.append((name, info.pid))

        if dead:
            with self._lock:
                pruned = False
                for name, pid in dead:
                    current = self._processes.get(name)
                    if current is not None and current.pid == pid:
                        del self._processes[name]
                        pruned = True
                        logger.info("Pruned dead process", name=name, pid=pid)
                if pruned:
                    self._persist()

        return results

    def get(self, name: str) -> ProcessInfo | None:
        with self._lock:
            return self._processes.get(name)

    def contains(self, name: str) -> bool:
        with self._lock:
            return name in self._processes

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.contains(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._processes)

    def items(self) -> list[tuple[str, ProcessInfo]]:
        with self._lock:
            return list(self._processes.items())

    def pids(self) -> dict[str, int]:
        with self._lock:
            return {name: info.pid for name, info in self._processes.items()}
