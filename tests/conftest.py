"""Shared pytest fixtures for the popforge test suite.

Provides reusable fixtures for:
- A scripted fake process runner and background processes (no real toolchain needed)
- Local template trees with placeholders and binary files
- Contract and parachain project layouts
- Test configurations with retry delays disabled
"""

from __future__ import annotations

import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from popforge.config import Config, RetryConfig, TelemetryConfig
from popforge.runner import CapturedOutput, ProcessNonZeroExit, ProcessTimedOut, describe


# ---------------------------------------------------------------------------
# Fake process runner
# ---------------------------------------------------------------------------


@dataclass
class RecordedCall:
    command: str
    args: list[str]
    cwd: Path | None = None
    env: dict[str, str] | None = None
    timeout: float | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass
class FakeProcess:
    """Stand-in for :class:`popforge.runner.BackgroundProcess`."""

    call: RecordedCall
    running: bool = True
    stop_count: int = 0
    output: CapturedOutput = field(default_factory=lambda: CapturedOutput(exit_code=-9))

    async def stop(self) -> CapturedOutput:
        self.running = False
        self.stop_count += 1
        return self.output


@dataclass
class _Rule:
    command: str
    prefix: tuple[str, ...]
    responses: list[Any] = field(default_factory=list)
    side_effect: Callable[[RecordedCall], None] | None = None

    def matches(self, command: str, args: Sequence[str]) -> bool:
        return command == self.command and tuple(args[: len(self.prefix)]) == self.prefix


class FakeRunner:
    """Drop-in replacement for :class:`popforge.runner.ProcessRunner`.

    Rules are matched on the command and an argument prefix, most recent
    first. Each rule returns its responses in order and repeats the last one.
    A response is either a :class:`CapturedOutput` or an exception instance
    to raise. Unmatched calls succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self.started: list[FakeProcess] = []
        self._rules: list[_Rule] = []

    def on(
        self,
        command: str,
        *prefix: str,
        responses: Sequence[Any] = (),
        side_effect: Callable[[RecordedCall], None] | None = None,
    ) -> "FakeRunner":
        self._rules.insert(0, _Rule(command, tuple(prefix), list(responses), side_effect))
        return self

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 120.0,
    ) -> CapturedOutput:
        call = RecordedCall(command, list(args), Path(cwd) if cwd else None, env, timeout)
        self.calls.append(call)
        for rule in self._rules:
            if not rule.matches(command, args):
                continue
            if rule.side_effect is not None:
                rule.side_effect(call)
            if not rule.responses:
                break
            response = rule.responses.pop(0) if len(rule.responses) > 1 else rule.responses[0]
            if isinstance(response, BaseException):
                raise response
            return response
        return CapturedOutput(exit_code=0)

    async def start(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> "FakeProcess":
        """Record a background start; rules may map it to an exception."""
        call = RecordedCall(command, list(args), Path(cwd) if cwd else None, env, None)
        self.calls.append(call)
        for rule in self._rules:
            if rule.matches(command, args) and rule.responses:
                response = rule.responses[0]
                if isinstance(response, BaseException):
                    raise response
                break
        process = FakeProcess(call)
        self.started.append(process)
        return process

    def commands(self) -> list[str]:
        return [describe(call.command, call.args) for call in self.calls]


def ok(stdout: str = "", stderr: str = "") -> CapturedOutput:
    return CapturedOutput(exit_code=0, stdout=stdout, stderr=stderr)


def nonzero(command: str, stderr: str = "error", code: int = 1) -> ProcessNonZeroExit:
    return ProcessNonZeroExit(command, code, CapturedOutput(exit_code=code, stderr=stderr))


def timed_out(command: str, timeout: float = 1.0) -> ProcessTimedOut:
    return ProcessTimedOut(command, timeout, CapturedOutput(exit_code=-9))


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def test_config() -> Config:
    """Config with no retry delay and telemetry off."""
    return Config(
        retry=RetryConfig(retry_budget=1, retry_delay=0.0),
        telemetry=TelemetryConfig(enabled=False),
    )


# ---------------------------------------------------------------------------
# Template trees and projects
# ---------------------------------------------------------------------------


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """Local template with placeholders, a binary file and a .git directory."""
    root = tmp_path / "template"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(
        textwrap.dedent(
            """\
            [package]
            name = "{{crate_name}}"
            version = "0.1.0"
            authors = ["{{authors}}"]

            [dependencies]
            ink = { version = "5.0.0", default-features = false }
            """
        ),
        encoding="utf-8",
    )
    (root / "src" / "lib.rs").write_text(
        'pub struct {{contract_type}};\nfn main() { println!("{{ unknown_value }}"); }\n',
        encoding="utf-8",
    )
    (root / "logo.bin").write_bytes(b"\x89PNG\x00\x00{{name}}\xff\xfe")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    return root


@pytest.fixture
def contract_project(tmp_path: Path) -> Path:
    project = tmp_path / "flipper"
    project.mkdir()
    (project / "Cargo.toml").write_text(
        textwrap.dedent(
            """\
            [package]
            name = "flipper"
            version = "0.1.0"

            [dependencies]
            ink = { version = "5.0.0", default-features = false }
            """
        ),
        encoding="utf-8",
    )
    return project


@pytest.fixture
def parachain_project(tmp_path: Path) -> Path:
    project = tmp_path / "my-chain"
    (project / "node").mkdir(parents=True)
    (project / "runtime").mkdir()
    (project / "Cargo.toml").write_text(
        textwrap.dedent(
            """\
            [workspace]
            members = ["node", "runtime"]
            resolver = "2"
            """
        ),
        encoding="utf-8",
    )
    (project / "node" / "Cargo.toml").write_text(
        textwrap.dedent(
            """\
            [package]
            name = "my-chain-node"
            version = "0.1.0"
            """
        ),
        encoding="utf-8",
    )
    return project
