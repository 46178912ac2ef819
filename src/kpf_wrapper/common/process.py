"""Process execution for kubectl and ssh binaries.

Two seams live here:

* :class:`CommandExecutor` - the async spawn boundary used by the supervisor.
  :class:`AsyncCommandExecutor` launches processes with piped output and feeds
  their lines into a bounded :class:`EventStream`.
* :func:`run_command` and :func:`kill_process` - blocking helpers for the short
  OS utilities (``ps``, ``ip``, ``ifconfig``, ``kill``) used by probes.
"""

import asyncio
import os
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ProcessError, SystemCommandError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_EVENT_BUFFER = 100


class EventKind(str, Enum):
    """Kind of event emitted by a spawned process."""

    STDOUT = "stdout"
    STDERR = "stderr"
    ERROR = "error"
    TERMINATED = "terminated"


class ProcessEvent(BaseModel):
    """One line of output, a reader failure, or the final exit notification."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    line: str | None = None
    exit_code: int | None = None

    @classmethod
    def from_stdout(cls, line: str) -> "ProcessEvent":
        return cls(kind=EventKind.STDOUT, line=line)

    @classmethod
    def from_stderr(cls, line: str) -> "ProcessEvent":
        return cls(kind=EventKind.STDERR, line=line)

    @classmethod
    def from_error(cls, message: str) -> "ProcessEvent":
        return cls(kind=EventKind.ERROR, line=message)

    @classmethod
    def terminated(cls, exit_code: int | None) -> "ProcessEvent":
        return cls(kind=EventKind.TERMINATED, exit_code=exit_code)

    @property
    def is_terminal(self) -> bool:
        return self.kind is EventKind.TERMINATED


class ProcessOutput(BaseModel):
    """Captured output of a command that ran to completion."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    success: bool
    exit_code: int | None = None


class ProcessHandle(BaseModel):
    """Handle to a spawned long-running process."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(ge=0)
    program: str
    args: list[str] = Field(default_factory=list)


class EventStream:
    """Single-consumer view over the bounded event queue of one process.

    Three producers write into the queue: a stdout line reader, a stderr line
    reader and an exit waiter. Producers block when the queue is full, so the
    consumer must keep draining it or the child will stall on a full pipe.

    The exit waiter queues ``TERMINATED`` only after both readers hit EOF, so
    it is always the last event and iteration stops after it.
    """

    def __init__(
        self,
        queue: "asyncio.Queue[ProcessEvent]",
        tasks: list["asyncio.Task[None]"] | None = None,
    ):
        self._queue = queue
        self._tasks = tasks or []
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once the TERMINATED event has been consumed."""
        return self._finished

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> ProcessEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.is_terminal:
            self._finished = True
        return event

    async def next_event(self, timeout: float | None = None) -> ProcessEvent | None:
        """Wait for the next event.

        Args:
            timeout: Seconds to wait, None to wait forever

        Returns:
            The event, or None when the timeout expired
        """
        try:
            event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if event.is_terminal:
            self._finished = True
        return event

    def drain(self) -> list[ProcessEvent]:
        """Return every event currently queued without waiting."""
        events = []
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if event.is_terminal:
                self._finished = True
            events.append(event)
        return events

    async def wait_closed(self) -> None:
        """Wait until every producer task has finished."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class CommandExecutor(ABC):
    """Abstraction over running external programs."""

    @abstractmethod
    async def execute(
        self, program: str, args: list[str], env: Mapping[str, str] | None = None
    ) -> ProcessOutput:
        """Run a program to completion and capture its output."""

    @abstractmethod
    async def spawn(
        self, program: str, args: list[str], env: Mapping[str, str] | None = None
    ) -> tuple[ProcessHandle, EventStream]:
        """Launch a long-running program and stream its events."""


class AsyncCommandExecutor(CommandExecutor):
    """CommandExecutor backed by asyncio subprocesses."""

    def __init__(self, buffer_size: int = DEFAULT_EVENT_BUFFER):
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size

    @staticmethod
    def _merge_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
        if not env:
            return None
        merged = dict(os.environ)
        merged.update(env)
        return merged

    async def execute(
        self, program: str, args: list[str], env: Mapping[str, str] | None = None
    ) -> ProcessOutput:
        """Run a program to completion.

        Raises:
            ProcessError: If the program cannot be started
        """
        logger.debug("Executing command", program=program, args=args)
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._merge_env(env),
            )
        except OSError as e:
            logger.error("Failed to execute command", program=program, error=str(e))
            raise ProcessError(f"Failed to execute {program}: {e}") from e

        stdout, stderr = await process.communicate()
        return ProcessOutput(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            success=process.returncode == 0,
            exit_code=process.returncode,
        )

    async def spawn(
        self, program: str, args: list[str], env: Mapping[str, str] | None = None
    ) -> tuple[ProcessHandle, EventStream]:
        """Launch a program with piped stdout/stderr.

        Raises:
            ProcessError: If the program cannot be started
        """
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._merge_env(env),
            )
        except OSError as e:
            logger.error("Failed to spawn process", program=program, error=str(e))
            raise ProcessError(f"Failed to spawn {program}: {e}") from e

        queue: asyncio.Queue[ProcessEvent] = asyncio.Queue(maxsize=self.buffer_size)
        readers = [
            asyncio.create_task(
                _pump_lines(process.stdout, ProcessEvent.from_stdout, queue)
            ),
            asyncio.create_task(
                _pump_lines(process.stderr, ProcessEvent.from_stderr, queue)
            ),
        ]
        tasks = [*readers, asyncio.create_task(_wait_for_exit(process, readers, queue))]

        handle = ProcessHandle(pid=process.pid, program=program, args=list(args))
        logger.info("Process spawned", program=program, pid=process.pid)
        return handle, EventStream(queue, tasks)


async def _pump_lines(
    reader: asyncio.StreamReader | None,
    make_event: Callable[[str], ProcessEvent],
    queue: "asyncio.Queue[ProcessEvent]",
) -> None:
    if reader is None:
        return
    while True:
        try:
            raw = await reader.readline()
        except (ValueError, asyncio.LimitOverrunError) as e:
            # readline already discarded the oversized chunk
            await queue.put(ProcessEvent.from_error(f"Failed to read output: {e}"))
            continue
        if not raw:
            return
        line = raw.decode(errors="replace").rstrip("\r\n")
        await queue.put(make_event(line))


async def _wait_for_exit(
    process: asyncio.subprocess.Process,
    readers: list["asyncio.Task[None]"],
    queue: "asyncio.Queue[ProcessEvent]",
) -> None:
    exit_code = await process.wait()
    await asyncio.gather(*readers, return_exceptions=True)
    logger.debug("Process exited", pid=process.pid, exit_code=exit_code)
    await queue.put(ProcessEvent.terminated(exit_code))


def run_command(
    args: list[str], timeout: float | None = 10.0
) -> subprocess.CompletedProcess[str]:
    """Run a short OS utility and capture its output.

    Args:
        args: Program and arguments
        timeout: Seconds before the call is abandoned

    Returns:
        The completed process, whatever its exit status

    Raises:
        SystemCommandError: If the program cannot be run or times out
    """
    try:
        return subprocess.run(
            args,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise SystemCommandError(f"Failed to run {args[0]}: {e}") from e


def kill_process(pid: int) -> None:
    """Send a termination signal to a process.

    Raises:
        ProcessError: If the signal could not be delivered
    """
    if sys.platform == "win32":
        args = ["taskkill", "/PID", str(pid), "/F"]
    else:
        args = ["kill", str(pid)]

    try:
        result = run_command(args)
    except SystemCommandError as e:
        raise ProcessError(f"Failed to kill process {pid}: {e}") from e

    if result.returncode != 0:
        logger.warning("Kill failed", pid=pid, stderr=result.stderr.strip())
        raise ProcessError(f"Failed to kill process {pid}: {result.stderr.strip()}")

    logger.info("Process killed", pid=pid)
