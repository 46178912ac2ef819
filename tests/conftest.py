"""Shared pytest fixtures for kpf wrapper tests."""

import asyncio
from collections.abc import Mapping
from unittest.mock import Mock

import pytest

from kpf_wrapper.common.process import (
    CommandExecutor,
    EventStream,
    ProcessEvent,
    ProcessHandle,
    ProcessOutput,
)
from kpf_wrapper.config import ConfigCache, ConfigService, SupervisorSettings
from kpf_wrapper.supervisor import TunnelSupervisor
from kpf_wrapper.tunnels.detector import ProcessDetector
from kpf_wrapper.tunnels.models import TunnelConfig
from kpf_wrapper.tunnels.registry import ProcessRegistry


class FakeDetector(ProcessDetector):
    """Detector driven by an in-memory set of live pids and process lines."""

    def __init__(self, alive: set[int] | None = None, table: list[str] | None = None):
        self.alive = set(alive or ())
        self.table = list(table or [])
        self.all_alive = alive is None

    def is_alive(self, pid: int) -> bool:
        return self.all_alive or pid in self.alive

    def process_table(self) -> list[str]:
        return list(self.table)


class FakeExecutor(CommandExecutor):
    """Executor that hands out increasing pids and in-memory event queues."""

    def __init__(self, first_pid: int = 1000):
        self.next_pid = first_pid
        self.spawned: list[tuple[str, list[str], dict[str, str]]] = []
        self.queues: dict[int, asyncio.Queue] = {}
        self.output = ProcessOutput(stdout="Client Version: v1.30.0", success=True, exit_code=0)
        self.executed: list[tuple[str, list[str], Mapping[str, str] | None]] = []

    async def execute(self, program, args, env=None):
        self.executed.append((program, list(args), env))
        return self.output

    async def spawn(self, program, args, env=None):
        pid = self.next_pid
        self.next_pid += 1
        self.spawned.append((program, list(args), dict(env or {})))
        queue: asyncio.Queue[ProcessEvent] = asyncio.Queue(maxsize=100)
        self.queues[pid] = queue
        return ProcessHandle(pid=pid, program=program, args=list(args)), EventStream(queue)


@pytest.fixture
def kubectl_config():
    """Kubectl tunnel used throughout the tests.

    Returns:
        TunnelConfig: ``api`` forwarding 8080 to port 80 of svc/api
    """
    return TunnelConfig(
        name="api",
        namespace="default",
        service="svc/api",
        ports=["8080:80"],
    )


@pytest.fixture
def ssh_config():
    return TunnelConfig(
        name="bastion",
        service="user@bastion.example.com",
        ports=["5432"],
        forward_type="ssh",
    )


@pytest.fixture
def config_dir(tmp_path):
    """Temporary configuration directory.

    Args:
        tmp_path: pytest's tmp_path fixture

    Returns:
        Path: Directory for YAML config files and the state file
    """
    path = tmp_path / "easy-kpf"
    path.mkdir()
    return path


@pytest.fixture
def state_file(config_dir):
    return config_dir / "process-state.json"


@pytest.fixture
def detector():
    """Detector reporting every pid alive."""
    return FakeDetector()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def registry(state_file, detector):
    return ProcessRegistry(state_file, detector)


@pytest.fixture
def config_cache(config_dir, kubectl_config):
    """Config cache pre-populated with the ``api`` tunnel."""
    service = ConfigService(config_dir)
    service.save_tunnels([kubectl_config])
    return ConfigCache(service)


@pytest.fixture
def supervisor(config_dir, config_cache, registry, detector, executor):
    """Supervisor wired to fakes for every OS boundary.

    Returns:
        TunnelSupervisor: Supervisor with a mocked interface manager and killer
    """
    return TunnelSupervisor(
        SupervisorSettings(config_dir=config_dir, kubectl_path="kubectl"),
        config_service=config_cache.config_service,
        config_cache=config_cache,
        detector=detector,
        registry=registry,
        executor=executor,
        interface_manager=Mock(),
        killer=Mock(),
    )


@pytest.fixture
def make_detector():
    """Factory for detectors with a chosen set of live pids.

    Returns:
        type: FakeDetector; ``alive=None`` reports every pid alive
    """
    return FakeDetector
