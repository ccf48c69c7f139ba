"""External process execution.

Every toolchain call made by popforge (version probes, ``git`` fetches,
``cargo`` builds, node launches) goes through :class:`ProcessRunner`, so
capture limits, timeouts and child clean-up are implemented once.

A call either returns a :class:`CapturedOutput` (exit code 0) or raises one
of the :class:`RunError` subclasses. Retrying is left to the caller.
Long-running children such as a dev node are started with
:meth:`ProcessRunner.start` and killed through the same process-group path.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

_READ_CHUNK = 65536


@dataclass
class CapturedOutput:
    """Streams and timing of a finished process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    truncated: bool = False

    def tail(self, lines: int = 20) -> str:
        """Return the last *lines* of stderr, falling back to stdout."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RunError(Exception):
    """Base class for every process failure."""

    def __init__(self, message: str, command: str = "", output: CapturedOutput | None = None):
        self.command = command
        self.output = output
        super().__init__(message)


class CommandNotFound(RunError):
    """The binary does not exist or is not executable."""


class ProcessTimedOut(RunError):
    """The process exceeded its timeout and was killed."""

    def __init__(self, command: str, timeout: float, output: CapturedOutput | None = None):
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s: {command}", command, output)


class ProcessNonZeroExit(RunError):
    """The process exited with a non-zero status."""

    def __init__(self, command: str, code: int, output: CapturedOutput):
        self.code = code
        detail = output.tail()
        message = f"Command failed (exit {code}): {command}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message, command, output)


class ProcessIOFailure(RunError):
    """The process could not be spawned or its pipes could not be read."""


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def describe(command: str, args: Sequence[str] = ()) -> str:
    """Render a command line for messages."""
    return shlex.join([command, *args])


class ProcessRunner:
    """Runs external commands with bounded capture and forceful clean-up.

    Children are started in their own session so that a timeout or a user
    interrupt can kill the whole process group (``cargo`` spawns ``rustc``
    workers that would otherwise be orphaned).
    """

    def __init__(self, output_cap_bytes: int = 1_048_576, kill_grace_seconds: float = 5.0) -> None:
        self.output_cap_bytes = output_cap_bytes
        self.kill_grace_seconds = kill_grace_seconds

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = 120.0,
    ) -> CapturedOutput:
        """Run *command* with *args* and wait for it to exit.

        Args:
            command: Binary name or path.
            args: Ordered argument list.
            cwd: Working directory for the child.
            env: Variables overlaid on ``os.environ``.
            timeout: Wall-clock limit in seconds; ``None`` waits forever.

        Returns:
            The captured output of a process that exited with status 0.

        Raises:
            CommandNotFound: The binary is missing.
            ProcessTimedOut: The timeout elapsed; the child was killed.
            ProcessNonZeroExit: The child exited with a non-zero status.
            ProcessIOFailure: Spawning or reading the child failed.
        """
        cmd_str = describe(command, args)
        start = time.monotonic()
        process = await self._spawn(command, args, cwd, env, cmd_str)

        assert process.stdout is not None and process.stderr is not None  # guaranteed by PIPE
        stdout_task = asyncio.ensure_future(self._drain(process.stdout))
        stderr_task = asyncio.ensure_future(self._drain(process.stderr))
        wait_task = asyncio.ensure_future(process.wait())
        tasks = {stdout_task, stderr_task, wait_task}

        try:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            # User interrupt: never return with a live child.
            await self._terminate(process)
            for task in tasks:
                task.cancel()
            raise

        if pending:
            # Drains keep running so the output read so far survives the kill.
            await self._terminate(process)
            await self._settle(tasks)
            output = self._collect(process, stdout_task, stderr_task, start)
            raise ProcessTimedOut(cmd_str, timeout or 0.0, output)

        for task in (stdout_task, stderr_task):
            exc = task.exception()
            if exc is not None:
                await self._terminate(process)
                raise ProcessIOFailure(f"I/O failure while running {cmd_str}: {exc}", cmd_str) from exc

        output = self._collect(process, stdout_task, stderr_task, start)
        if output.exit_code != 0:
            raise ProcessNonZeroExit(cmd_str, output.exit_code, output)
        return output

    async def start(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "BackgroundProcess":
        """Start a long-running child (a dev node) and return without waiting.

        The child gets its own process group, like :meth:`run`. Call
        :meth:`BackgroundProcess.stop` to kill it and collect its output.

        Raises:
            CommandNotFound: The binary is missing.
            ProcessIOFailure: Spawning the child failed.
        """
        cmd_str = describe(command, args)
        start = time.monotonic()
        process = await self._spawn(command, args, cwd, env, cmd_str)
        assert process.stdout is not None and process.stderr is not None
        return BackgroundProcess(
            self,
            process,
            cmd_str,
            asyncio.ensure_future(self._drain(process.stdout)),
            asyncio.ensure_future(self._drain(process.stderr)),
            start,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _spawn(
        self,
        command: str,
        args: Sequence[str],
        cwd: str | Path | None,
        env: Mapping[str, str] | None,
        cmd_str: str,
    ) -> asyncio.subprocess.Process:
        merged_env = {**os.environ, **env} if env else None
        try:
            return await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as exc:
            raise CommandNotFound(f"Command not found: '{command}'", cmd_str) from exc
        except PermissionError as exc:
            raise CommandNotFound(f"Permission denied executing: '{command}'", cmd_str) from exc
        except OSError as exc:
            raise ProcessIOFailure(f"Failed to start {cmd_str}: {exc}", cmd_str) from exc

    async def _settle(self, tasks: set[asyncio.Future]) -> None:
        """Wait up to the kill grace period for *tasks*; cancel the rest."""
        _, pending = await asyncio.wait(tasks, timeout=self.kill_grace_seconds)
        for task in pending:
            task.cancel()

    async def _drain(self, stream: asyncio.StreamReader) -> tuple[bytes, int]:
        """Read *stream* to EOF, keeping at most ``output_cap_bytes``.

        Returns the kept bytes and the number of bytes dropped.
        """
        kept = bytearray()
        dropped = 0
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            room = self.output_cap_bytes - len(kept)
            if room > 0:
                kept.extend(chunk[:room])
            dropped += max(len(chunk) - max(room, 0), 0)
        return bytes(kept), dropped

    def _collect(
        self,
        process: asyncio.subprocess.Process,
        stdout_task: asyncio.Future,
        stderr_task: asyncio.Future,
        start: float,
    ) -> CapturedOutput:
        stdout, out_dropped = _task_bytes(stdout_task)
        stderr, err_dropped = _task_bytes(stderr_task)
        return CapturedOutput(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=_decode(stdout, out_dropped),
            stderr=_decode(stderr, err_dropped),
            duration_seconds=time.monotonic() - start,
            truncated=bool(out_dropped or err_dropped),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Kill the child (and its process group) and reap it."""
        if process.returncode is None:
            try:
                if os.name == "posix":
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
            except (ProcessLookupError, PermissionError):
                pass
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            pass


class BackgroundProcess:
    """A child started by :meth:`ProcessRunner.start`."""

    def __init__(
        self,
        runner: ProcessRunner,
        process: asyncio.subprocess.Process,
        command: str,
        stdout_task: asyncio.Future,
        stderr_task: asyncio.Future,
        start: float,
    ) -> None:
        self.command = command
        self._runner = runner
        self._process = process
        self._stdout_task = stdout_task
        self._stderr_task = stderr_task
        self._start = start
        self._output: CapturedOutput | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    async def stop(self) -> CapturedOutput:
        """Kill the process group and return what it wrote. Safe to call twice."""
        if self._output is None:
            await self._runner._terminate(self._process)
            await self._runner._settle({self._stdout_task, self._stderr_task})
            self._output = self._runner._collect(
                self._process, self._stdout_task, self._stderr_task, self._start
            )
        return self._output


def _task_bytes(task: asyncio.Future) -> tuple[bytes, int]:
    if task.done() and not task.cancelled() and task.exception() is None:
        return task.result()
    task.cancel()
    return b"", 0


def _decode(data: bytes, dropped: int) -> str:
    text = data.decode("utf-8", errors="replace")
    if dropped:
        text += f"\n[... truncated {dropped} bytes]"
    return text
