"""Host toolchain probing.

Runs each requirement's version query through the process runner and records
what was found. Detection never fails: a missing binary, a failing query or a
timeout all produce an absent entry, and the caller decides what to do.
"""

from __future__ import annotations

from rich.markup import escape
from rich.table import Table

from popforge.runner import ProcessRunner, RunError
from popforge.toolchain.models import (
    VERSION_PATTERN,
    Deficiency,
    ToolchainProfile,
    ToolchainRequirement,
    ToolStatus,
)
from popforge.utils import console


def first_version_line(text: str) -> str | None:
    """Return the version token from the first line that contains one."""
    for line in text.splitlines():
        match = VERSION_PATTERN.search(line)
        if match:
            return match.group(0)
    return None


class ToolchainDetector:
    """Builds a fresh :class:`ToolchainProfile` on every call."""

    def __init__(self, runner: ProcessRunner, probe_timeout: float = 15.0) -> None:
        self.runner = runner
        self.probe_timeout = probe_timeout

    async def detect(self, requirements: list[ToolchainRequirement]) -> ToolchainProfile:
        """Probe every requirement, in order, and return the full profile."""
        tools: dict[str, ToolStatus] = {}
        for req in requirements:
            tools[req.name] = await self._probe(req)
        return ToolchainProfile(tools=tools)

    async def _probe(self, req: ToolchainRequirement) -> ToolStatus:
        command, *args = req.query
        try:
            output = await self.runner.run(command, args, timeout=self.probe_timeout)
        except RunError:
            return ToolStatus(present=False)

        version = first_version_line(output.stdout) or first_version_line(output.stderr)
        if version is None:
            return ToolStatus(present=False)
        return ToolStatus(present=True, version=version)


def print_toolchain_table(
    profile: ToolchainProfile,
    requirements: list[ToolchainRequirement],
    deficiencies: list[Deficiency],
) -> None:
    """Render the detected toolchain next to the requirements."""
    failing = {d.requirement.name: d for d in deficiencies}
    table = Table(title="Toolchain", show_header=True, header_style="bold cyan")
    table.add_column("Tool", no_wrap=True)
    table.add_column("Required")
    table.add_column("Found")
    table.add_column("Status")

    for req in requirements:
        found = profile.version_of(req.name) or "-"
        if req.name in failing:
            status = "[red]missing[/red]" if found == "-" else "[red]too old[/red]"
        else:
            status = "[green]ok[/green]"
        table.add_row(req.name, f">= {req.min_version}", escape(found), status)

    console.print(table)
