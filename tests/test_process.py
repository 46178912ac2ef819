"""Tests for process execution and event streaming."""

import asyncio
import subprocess
import sys
from unittest.mock import patch

import pytest

from kpf_wrapper.common.exceptions import ProcessError, SystemCommandError
from kpf_wrapper.common.process import (
    AsyncCommandExecutor,
    EventKind,
    EventStream,
    ProcessEvent,
    kill_process,
    run_command,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires sh")


async def collect(stream: EventStream, idle: float = 2.0) -> list[ProcessEvent]:
    """Read events until none arrives for ``idle`` seconds."""
    events = []
    while True:
        event = await stream.next_event(idle)
        if event is None:
            return events
        events.append(event)


class TestProcessEvent:
    """Test event constructors."""

    def test_kinds(self):
        assert ProcessEvent.from_stdout("a").kind is EventKind.STDOUT
        assert ProcessEvent.from_stderr("b").kind is EventKind.STDERR
        assert ProcessEvent.from_error("c").kind is EventKind.ERROR

    def test_terminated(self):
        event = ProcessEvent.terminated(3)
        assert event.is_terminal
        assert event.exit_code == 3
        assert event.line is None


class TestEventStream:
    """Test suite for EventStream over a hand-fed queue."""

    @pytest.mark.asyncio
    async def test_iteration_stops_after_terminated(self):
        queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        for event in (
            ProcessEvent.from_stdout("one"),
            ProcessEvent.terminated(0),
            ProcessEvent.from_stderr("late"),
        ):
            queue.put_nowait(event)
        stream = EventStream(queue)

        events = [event async for event in stream]

        assert [e.kind for e in events] == [EventKind.STDOUT, EventKind.TERMINATED]
        assert stream.finished
        assert [e.line for e in stream.drain()] == ["late"]

    @pytest.mark.asyncio
    async def test_next_event_timeout(self):
        stream = EventStream(asyncio.Queue())
        assert await stream.next_event(0.01) is None
        assert not stream.finished

    @pytest.mark.asyncio
    async def test_drain_marks_finished(self):
        queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        queue.put_nowait(ProcessEvent.terminated(1))
        stream = EventStream(queue)

        assert len(stream.drain()) == 1
        assert stream.finished
        assert [event async for event in stream] == []


class TestAsyncCommandExecutor:
    """Test suite for AsyncCommandExecutor."""

    def test_rejects_empty_buffer(self):
        with pytest.raises(ValueError):
            AsyncCommandExecutor(buffer_size=0)

    def test_env_overlays_process_environment(self, monkeypatch):
        monkeypatch.setenv("KPF_TEST_BASE", "base")
        merged = AsyncCommandExecutor._merge_env({"KUBECONFIG": "/tmp/kc"})

        assert merged["KUBECONFIG"] == "/tmp/kc"
        assert merged["KPF_TEST_BASE"] == "base"
        assert AsyncCommandExecutor._merge_env(None) is None

    @pytest.mark.asyncio
    async def test_spawn_missing_program(self):
        with pytest.raises(ProcessError, match="Failed to spawn"):
            await AsyncCommandExecutor().spawn("/nonexistent/kubectl", [])

    @pytest.mark.asyncio
    async def test_execute_missing_program(self):
        with pytest.raises(ProcessError, match="Failed to execute"):
            await AsyncCommandExecutor().execute("/nonexistent/kubectl", ["version"])


@pytest.mark.integration
@posix_only
class TestAsyncCommandExecutorIntegration:
    """Tests spawning real shell processes."""

    @pytest.mark.asyncio
    async def test_spawn_streams_both_pipes_and_exit(self):
        handle, stream = await AsyncCommandExecutor().spawn(
            "sh", ["-c", "echo out; echo err 1>&2; exit 3"]
        )

        events = await collect(stream)

        assert handle.pid > 0
        assert ProcessEvent.from_stdout("out") in events
        assert ProcessEvent.from_stderr("err") in events
        terminated = [e for e in events if e.is_terminal]
        assert terminated == [ProcessEvent.terminated(3)]

    @pytest.mark.asyncio
    async def test_stdout_order_preserved_with_small_buffer(self):
        script = 'i=0; while [ "$i" -lt 50 ]; do echo "$i"; i=$((i+1)); done'
        _, stream = await AsyncCommandExecutor(buffer_size=1).spawn("sh", ["-c", script])

        events = await collect(stream)
        await stream.wait_closed()

        lines = [e.line for e in events if e.kind is EventKind.STDOUT]
        assert lines == [str(i) for i in range(50)]
        assert sum(1 for e in events if e.is_terminal) == 1

    @pytest.mark.asyncio
    async def test_terminated_follows_all_output_with_small_buffer(self):
        _, stream = await AsyncCommandExecutor(buffer_size=10).spawn(
            "sh", ["-c", "seq 1 20000; seq 1 20000 >&2"]
        )

        events = [event async for event in stream]
        await asyncio.wait_for(stream.wait_closed(), timeout=5)

        assert events[-1] == ProcessEvent.terminated(0)
        assert sum(1 for e in events if e.kind is EventKind.STDOUT) == 20000
        assert sum(1 for e in events if e.kind is EventKind.STDERR) == 20000
        assert stream.drain() == []

    @pytest.mark.asyncio
    async def test_reading_continues_after_oversized_line(self):
        script = "head -c 200000 /dev/zero | tr '\\000' a; echo; echo after"
        _, stream = await AsyncCommandExecutor().spawn("sh", ["-c", script])

        events = [event async for event in stream]
        await asyncio.wait_for(stream.wait_closed(), timeout=5)

        assert any(e.kind is EventKind.ERROR for e in events)
        assert ProcessEvent.from_stdout("after") in events
        assert events[-1] == ProcessEvent.terminated(0)

    @pytest.mark.asyncio
    async def test_env_is_passed(self):
        _, stream = await AsyncCommandExecutor().spawn(
            "sh", ["-c", 'echo "$KPF_PROBE"'], {"KPF_PROBE": "hello"}
        )

        events = await collect(stream)

        assert ProcessEvent.from_stdout("hello") in events

    @pytest.mark.asyncio
    async def test_execute_captures_output(self):
        output = await AsyncCommandExecutor().execute("sh", ["-c", "echo v1; exit 0"])

        assert output.success
        assert output.exit_code == 0
        assert output.stdout.strip() == "v1"

    @pytest.mark.asyncio
    async def test_execute_reports_failure(self):
        output = await AsyncCommandExecutor().execute("sh", ["-c", "echo bad 1>&2; exit 4"])

        assert not output.success
        assert output.exit_code == 4
        assert output.stderr.strip() == "bad"


class TestRunCommand:
    """Test the blocking helpers."""

    @patch("kpf_wrapper.common.process.subprocess.run")
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("No such file: ip")

        with pytest.raises(SystemCommandError, match="Failed to run ip"):
            run_command(["ip", "addr", "show"])

    @patch("kpf_wrapper.common.process.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="ps", timeout=1)

        with pytest.raises(SystemCommandError):
            run_command(["ps", "aux"], timeout=1)

    @patch("kpf_wrapper.common.process.run_command")
    @patch("kpf_wrapper.common.process.sys")
    def test_kill_unix(self, mock_sys, mock_run):
        mock_sys.platform = "linux"
        mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")

        kill_process(4242)

        mock_run.assert_called_once_with(["kill", "4242"])

    @patch("kpf_wrapper.common.process.run_command")
    @patch("kpf_wrapper.common.process.sys")
    def test_kill_windows(self, mock_sys, mock_run):
        mock_sys.platform = "win32"
        mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")

        kill_process(4242)

        mock_run.assert_called_once_with(["taskkill", "/PID", "4242", "/F"])

    @patch("kpf_wrapper.common.process.run_command")
    def test_kill_failure_surfaces_stderr(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            [], 1, "", "kill: (4242) - No such process"
        )

        with pytest.raises(ProcessError, match="No such process"):
            kill_process(4242)

    @patch("kpf_wrapper.common.process.run_command")
    def test_kill_command_unavailable(self, mock_run):
        mock_run.side_effect = SystemCommandError("Failed to run kill")

        with pytest.raises(ProcessError, match="Failed to kill process 4242"):
            kill_process(4242)
