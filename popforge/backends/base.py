"""Backend capability interface.

A backend owns the scaffold hook, build, test and deploy operations for one
target kind. Every stage operation returns a :class:`StageOutcome`; process
failures never escape as exceptions. The only exception a stage operation
raises is :class:`OrderViolation`, when an operation is called before the one
it depends on has succeeded on the same instance.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field
from rich.markup import escape

from popforge.config import Config
from popforge.models import StageOutcome, TargetKind
from popforge.runner import (
    CommandNotFound,
    ProcessIOFailure,
    ProcessNonZeroExit,
    ProcessRunner,
    ProcessTimedOut,
    describe,
)
from popforge.scaffolder.resolver import MaterializedTemplate
from popforge.toolchain import ToolchainRequirement, requirements_for
from popforge.utils import console, format_duration

# stderr fragments that indicate a transient network or registry problem.
TRANSIENT_SIGNATURES: tuple[str, ...] = (
    "spurious network error",
    "failed to download",
    "failed to fetch",
    "could not resolve host",
    "connection reset",
    "connection refused",
    "operation timed out",
    "network is unreachable",
    "temporary failure in name resolution",
    "blocking waiting for file lock",
)


def is_transient(text: str) -> bool:
    lowered = text.lower()
    return any(signature in lowered for signature in TRANSIENT_SIGNATURES)


class OrderViolation(Exception):
    """A stage operation was called before its prerequisite succeeded."""

    def __init__(self, operation: str, prerequisite: str, backend: str):
        self.operation = operation
        self.prerequisite = prerequisite
        super().__init__(
            f"{backend}: cannot {operation} before a successful {prerequisite}"
        )


class TargetInfo(BaseModel):
    """Static description of what a backend does for its target kind."""

    kind: TargetKind
    backend: str
    description: str
    artifact_dir: str = Field(default="", description="Where build artifacts land, relative to the project")
    build_command: str = ""
    test_command: str = ""
    deploy_command: str = ""


@dataclass
class Invocation:
    """One external tool call made by a stage."""

    command: str
    args: list[str] = field(default_factory=list)
    timeout: float | None = 120.0
    env: dict[str, str] | None = None

    def describe(self) -> str:
        return describe(self.command, self.args)


class Backend(ABC):
    """Shared contract of every target backend."""

    kind: ClassVar[TargetKind]
    name: ClassVar[str]

    def __init__(self, runner: ProcessRunner, config: Config | None = None) -> None:
        self.runner = runner
        self.config = config or Config()
        self._built = False
        self._tested = False

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def requirements(self, include_deploy: bool = False) -> list[ToolchainRequirement]:
        return requirements_for(self.kind, include_deploy)

    @abstractmethod
    async def scaffold_hook(self, project: Path, materialized: MaterializedTemplate) -> StageOutcome:
        """Add backend-specific files to a freshly materialized project."""

    async def build(self, project: Path) -> StageOutcome:
        self._built = False
        self._tested = False
        outcome = await self.execute("build", self.build_invocation(project), project)
        self._built = outcome.is_success
        return outcome

    async def test(self, project: Path) -> StageOutcome:
        if not self._built:
            raise OrderViolation("test", "build", self.name)
        self._tested = False
        outcome = await self.execute("test", self.test_invocation(project), project)
        self._tested = outcome.is_success
        return outcome

    async def deploy(self, project: Path) -> StageOutcome:
        if not self._tested:
            raise OrderViolation("deploy", "test", self.name)
        problem = self.deploy_precondition(project)
        if problem:
            return StageOutcome.failed(problem)
        return await self.execute("deploy", self.deploy_invocation(project), project)

    @abstractmethod
    def target_info(self) -> TargetInfo:
        """Describe the backend."""

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_invocation(self, project: Path) -> Invocation: ...

    @abstractmethod
    def test_invocation(self, project: Path) -> Invocation: ...

    @abstractmethod
    def deploy_invocation(self, project: Path) -> Invocation: ...

    def deploy_precondition(self, project: Path) -> str | None:
        """Return a message when deploying cannot even be attempted."""
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, label: str, invocation: Invocation, project: Path) -> StageOutcome:
        """Run *invocation* in *project* and map the result to an outcome."""
        console.print(f"  [dim]$ {escape(invocation.describe())}[/dim]")
        try:
            output = await self.runner.run(
                invocation.command,
                invocation.args,
                cwd=project,
                env=invocation.env,
                timeout=invocation.timeout,
            )
        except ProcessTimedOut as exc:
            return StageOutcome.failed(str(exc), retryable=True)
        except ProcessNonZeroExit as exc:
            stderr = exc.output.stderr if exc.output else ""
            return StageOutcome.failed(str(exc), retryable=is_transient(stderr))
        except CommandNotFound as exc:
            return StageOutcome.failed(str(exc))
        except ProcessIOFailure as exc:
            return StageOutcome.failed(str(exc))

        return StageOutcome.success(
            f"{self.name} {label} finished in {format_duration(output.duration_seconds)}"
        )
