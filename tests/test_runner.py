"""Unit tests for the process runner (popforge.runner).

Uses the running Python interpreter as the child process so the tests need
no external toolchain.

Tests cover:
- Successful capture of stdout/stderr
- Non-zero exit raising ProcessNonZeroExit with the stderr tail
- Missing binaries raising CommandNotFound
- Timeouts killing the child and raising ProcessTimedOut with the partial output
- Output truncation at the capture limit
- Working directory and environment overlay
- Cancellation leaving no live child
- Background processes started, stopped and collected
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from popforge.runner import (
    CapturedOutput,
    CommandNotFound,
    ProcessNonZeroExit,
    ProcessRunner,
    ProcessTimedOut,
    RunError,
    describe,
)

PYTHON = sys.executable


def _script(code: str) -> list[str]:
    return ["-c", code]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestCapturedOutput:
    @pytest.mark.unit
    def test_tail_prefers_stderr(self):
        output = CapturedOutput(exit_code=1, stdout="out", stderr="a\nb\nc")
        assert output.tail(lines=2) == "b\nc"

    @pytest.mark.unit
    def test_tail_falls_back_to_stdout(self):
        output = CapturedOutput(exit_code=1, stdout="only stdout\n", stderr="  ")
        assert output.tail() == "only stdout"

    @pytest.mark.unit
    def test_describe_quotes_arguments(self):
        assert describe("git", ["commit", "-m", "initial commit"]) == "git commit -m 'initial commit'"


# ---------------------------------------------------------------------------
# ProcessRunner.run
# ---------------------------------------------------------------------------


class TestProcessRunner:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_captures_streams(self):
        runner = ProcessRunner()
        output = await runner.run(
            PYTHON,
            _script("import sys; print('hello'); print('warn', file=sys.stderr)"),
        )
        assert output.exit_code == 0
        assert output.stdout.strip() == "hello"
        assert output.stderr.strip() == "warn"
        assert output.truncated is False
        assert output.duration_seconds >= 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        runner = ProcessRunner()
        with pytest.raises(ProcessNonZeroExit) as exc_info:
            await runner.run(
                PYTHON,
                _script("import sys; print('boom happened', file=sys.stderr); sys.exit(3)"),
            )
        err = exc_info.value
        assert err.code == 3
        assert err.output is not None
        assert "boom happened" in err.output.stderr
        assert "exit 3" in str(err)
        assert "boom happened" in str(err)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_binary(self):
        runner = ProcessRunner()
        with pytest.raises(CommandNotFound) as exc_info:
            await runner.run("popforge-definitely-not-installed", ["--version"])
        assert isinstance(exc_info.value, RunError)
        assert "popforge-definitely-not-installed" in str(exc_info.value)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_child(self):
        runner = ProcessRunner(kill_grace_seconds=2.0)
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(ProcessTimedOut) as exc_info:
            await runner.run(PYTHON, _script("import time; time.sleep(30)"), timeout=0.5)
        assert loop.time() - started < 10
        assert exc_info.value.timeout == 0.5
        assert "timed out" in str(exc_info.value)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_output_truncated_at_cap(self):
        runner = ProcessRunner(output_cap_bytes=1024)
        output = await runner.run(PYTHON, _script("print('x' * 100000)"))
        assert output.truncated is True
        assert output.stdout.startswith("x" * 1024)
        assert "[... truncated" in output.stdout
        assert len(output.stdout) < 2048

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cwd_is_applied(self, tmp_path: Path):
        runner = ProcessRunner()
        output = await runner.run(PYTHON, _script("import os; print(os.getcwd())"), cwd=tmp_path)
        assert Path(output.stdout.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_env_is_overlaid(self):
        runner = ProcessRunner()
        output = await runner.run(
            PYTHON,
            _script("import os; print(os.environ['POPFORGE_TEST_VALUE'], 'PATH' in os.environ)"),
            env={"POPFORGE_TEST_VALUE": "42"},
        )
        assert output.stdout.split() == ["42", "True"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_timeout(self):
        runner = ProcessRunner()
        output = await runner.run(PYTHON, _script("print('done')"), timeout=None)
        assert output.stdout.strip() == "done"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, tmp_path: Path):
        runner = ProcessRunner(kill_grace_seconds=2.0)
        task = asyncio.ensure_future(
            runner.run(PYTHON, _script("import time; time.sleep(30)"), timeout=None)
        )
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_output(self):
        runner = ProcessRunner(kill_grace_seconds=2.0)
        code = (
            "import sys, time\n"
            "print('partial-out', flush=True)\n"
            "print('partial-err', file=sys.stderr, flush=True)\n"
            "time.sleep(30)\n"
        )
        with pytest.raises(ProcessTimedOut) as exc_info:
            await runner.run(PYTHON, _script(code), timeout=1.0)

        output = exc_info.value.output
        assert output is not None
        assert output.stdout.strip() == "partial-out"
        assert output.stderr.strip() == "partial-err"
        assert output.exit_code != 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_keeps_truncation_marker(self):
        runner = ProcessRunner(output_cap_bytes=1024, kill_grace_seconds=2.0)
        code = "import sys, time; sys.stderr.write('e' * 5000); sys.stderr.flush(); time.sleep(30)"
        with pytest.raises(ProcessTimedOut) as exc_info:
            await runner.run(PYTHON, _script(code), timeout=1.0)

        output = exc_info.value.output
        assert output.truncated is True
        assert output.stderr.startswith("e" * 1024)
        assert "[... truncated 3976 bytes]" in output.stderr


# ---------------------------------------------------------------------------
# Background processes
# ---------------------------------------------------------------------------


class TestBackgroundProcess:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_kills_and_collects_output(self):
        runner = ProcessRunner(kill_grace_seconds=2.0)
        node = await runner.start(
            PYTHON, _script("import time; print('listening', flush=True); time.sleep(30)")
        )
        assert node.running
        await asyncio.sleep(0.5)

        output = await node.stop()

        assert not node.running
        assert output.stdout.strip() == "listening"
        assert output.exit_code != 0
        assert await node.stop() is output

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exited_child_reports_not_running(self):
        runner = ProcessRunner()
        node = await runner.start(PYTHON, _script("import sys; sys.exit(3)"))
        for _ in range(50):
            if not node.running:
                break
            await asyncio.sleep(0.1)

        assert not node.running
        assert (await node.stop()).exit_code == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with pytest.raises(CommandNotFound):
            await ProcessRunner().start("popforge-definitely-not-installed", ["--dev"])
