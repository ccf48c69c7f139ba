"""Toolchain requirement and profile models."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


def parse_version(text: str) -> tuple[int, int, int] | None:
    """Extract ``(major, minor, patch)`` from the first version-like token."""
    match = VERSION_PATTERN.search(text)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


class ToolchainRequirement(BaseModel):
    """An external tool a target kind depends on."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name, unique within a requirement set")
    min_version: str = Field(default="0.0.0")
    install_hint: str = Field(default="")
    version_command: tuple[str, ...] = Field(
        default=(), description="Version query; defaults to '<name> --version'"
    )
    deploy_only: bool = Field(default=False, description="Only needed when Deploy is requested")

    @field_validator("min_version")
    @classmethod
    def _check_min_version(cls, value: str) -> str:
        if parse_version(value) is None:
            raise ValueError(f"not a version: {value!r}")
        return value

    @property
    def query(self) -> tuple[str, ...]:
        return self.version_command or (self.name, "--version")

    @property
    def minimum(self) -> tuple[int, int, int]:
        return parse_version(self.min_version) or (0, 0, 0)


class ToolStatus(BaseModel):
    """Detected state of one tool."""

    model_config = ConfigDict(frozen=True)

    present: bool
    version: str | None = None


class DeficiencyKind(str, Enum):
    TOOL_MISSING = "tool-missing"
    TOOL_VERSION_TOO_LOW = "tool-version-too-low"


class Deficiency(BaseModel):
    """One unmet requirement."""

    model_config = ConfigDict(frozen=True)

    kind: DeficiencyKind
    requirement: ToolchainRequirement
    found: str | None = None

    def describe(self) -> str:
        req = self.requirement
        if self.kind is DeficiencyKind.TOOL_MISSING:
            text = f"{req.name} is not installed (requires >= {req.min_version})"
        else:
            text = f"{req.name} {self.found} is too old (requires >= {req.min_version})"
        if req.install_hint:
            text = f"{text}; install with: {req.install_hint}"
        return text


class ToolchainProfile(BaseModel):
    """Read-only snapshot of the host toolchain for one invocation."""

    model_config = ConfigDict(frozen=True)

    tools: dict[str, ToolStatus] = Field(default_factory=dict)

    def version_of(self, name: str) -> str | None:
        status = self.tools.get(name)
        return status.version if status else None

    def as_versions(self) -> dict[str, str | None]:
        return {name: status.version for name, status in self.tools.items()}

    def deficiencies(self, requirements: list[ToolchainRequirement]) -> list[Deficiency]:
        """Compare the profile against *requirements* and list every gap."""
        found: list[Deficiency] = []
        for req in requirements:
            status = self.tools.get(req.name)
            if status is None or not status.present or status.version is None:
                found.append(Deficiency(kind=DeficiencyKind.TOOL_MISSING, requirement=req))
                continue
            detected = parse_version(status.version)
            if detected is None or detected < req.minimum:
                found.append(
                    Deficiency(
                        kind=DeficiencyKind.TOOL_VERSION_TOO_LOW,
                        requirement=req,
                        found=status.version,
                    )
                )
        return found


class UnmetToolchainError(Exception):
    """Aggregated report of every missing or outdated tool."""

    def __init__(self, deficiencies: list[Deficiency]):
        self.deficiencies = list(deficiencies)
        lines = [f"  - {d.describe()}" for d in self.deficiencies]
        super().__init__(
            f"Unmet toolchain ({len(self.deficiencies)} issue(s)):\n" + "\n".join(lines)
        )

    @property
    def missing(self) -> list[str]:
        return [
            d.requirement.name for d in self.deficiencies if d.kind is DeficiencyKind.TOOL_MISSING
        ]

    @property
    def outdated(self) -> list[str]:
        return [
            d.requirement.name
            for d in self.deficiencies
            if d.kind is DeficiencyKind.TOOL_VERSION_TOO_LOW
        ]
