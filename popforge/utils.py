"""Shared utility functions for popforge.

Provides the single Rich console, stage headers, summary tables, coloured
status lines, small name/duration formatting helpers and TCP port checks.
"""

from __future__ import annotations

import asyncio
import re
import socket
import time
from collections.abc import Callable

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from popforge.models import PipelineStage

console = Console()

# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary project name to a safe directory/package name.

    Examples::

        sanitize_name("My Flipper") -> "my-flipper"
        sanitize_name("  Para (v2)  ") -> "para-v2"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def snake_case(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s.]+", "_", s2).lower()


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STAGE_NAMES: dict[PipelineStage, str] = {
    PipelineStage.SCAFFOLD: "SCAFFOLD",
    PipelineStage.VALIDATE_TOOLCHAIN: "VALIDATE TOOLCHAIN",
    PipelineStage.BUILD: "BUILD",
    PipelineStage.TEST: "TEST",
    PipelineStage.DEPLOY: "DEPLOY",
}

STAGE_COLORS: dict[PipelineStage, str] = {
    PipelineStage.SCAFFOLD: "bright_green",
    PipelineStage.VALIDATE_TOOLCHAIN: "bright_cyan",
    PipelineStage.BUILD: "bright_yellow",
    PipelineStage.TEST: "bright_magenta",
    PipelineStage.DEPLOY: "bright_blue",
}


def print_stage_header(stage: PipelineStage, attempt: int = 1) -> None:
    """Print a full-width rule announcing a stage (and its retry attempt)."""
    color = STAGE_COLORS.get(stage, "white")
    position = list(PipelineStage).index(stage) + 1
    suffix = f" (attempt {attempt})" if attempt > 1 else ""
    console.print()
    console.print(
        Rule(
            f"[bold {color}] Stage {position}: {STAGE_NAMES[stage]}{suffix} [/bold {color}]",
            style=color,
        )
    )


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


# ---------------------------------------------------------------------------
# Port checks
# ---------------------------------------------------------------------------


async def is_port_open(host: str, port: int) -> bool:
    """Return ``True`` if something accepts TCP connections on *host*:*port*."""
    loop = asyncio.get_running_loop()

    def _probe() -> bool:
        sock = socket.socket(socket.AF_INET6 if ":" in host else socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        try:
            # connect_ex returns 0 when a listener accepted the connection
            return sock.connect_ex((host, port)) == 0
        except OSError:
            return False
        finally:
            sock.close()

    return await loop.run_in_executor(None, _probe)


async def wait_for_port(
    host: str,
    port: int,
    timeout: float = 60.0,
    interval: float = 0.5,
    alive: Callable[[], bool] | None = None,
) -> bool:
    """Poll *host*:*port* until it accepts connections or *timeout* elapses.

    Args:
        host: Host name or address to connect to.
        port: TCP port.
        timeout: Maximum seconds to wait.
        interval: Seconds between probes.
        alive: Optional check on the process expected to open the port;
            polling stops early once it returns ``False``.

    Returns:
        ``True`` if the port opened within the timeout window.
    """
    deadline = time.monotonic() + timeout
    while True:
        if await is_port_open(host, port):
            return True
        if alive is not None and not alive():
            return False
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(interval, remaining))
