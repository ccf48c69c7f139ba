"""Project markers and target-kind detection for existing projects."""

from __future__ import annotations

import tomllib
from pathlib import Path

from popforge.models import TargetKind
from popforge.scaffolder.templates import TemplateRenderer

MARKER_PATH = Path(".popforge") / "target.toml"


class TargetKindMismatch(Exception):
    """A project scaffolded as one kind was requested as another."""

    def __init__(self, project: Path, recorded: TargetKind, requested: TargetKind):
        self.project = project
        self.recorded = recorded
        self.requested = requested
        super().__init__(
            f"{project} was scaffolded as a {recorded.value} project and cannot be "
            f"handled as a {requested.value} project"
        )


async def write_target_marker(
    project: Path,
    kind: TargetKind,
    name: str,
    template: str | None = None,
    reference: str | None = None,
    renderer: TemplateRenderer | None = None,
) -> Path:
    """Record the target kind inside *project*."""
    renderer = renderer or TemplateRenderer()
    context = {
        "kind": kind.value,
        "name": name,
        "template": template,
        "reference": reference,
    }
    return await renderer.render_to_file("target.toml.j2", project / MARKER_PATH, context)


def read_target_marker(project: Path) -> TargetKind | None:
    """Return the recorded target kind, or ``None`` when there is no marker."""
    marker = project / MARKER_PATH
    if not marker.is_file():
        return None
    with marker.open("rb") as fh:
        data = tomllib.load(fh)
    kind = data.get("target", {}).get("kind")
    return TargetKind(kind) if kind else None


def is_contract(project: Path) -> bool:
    """Whether *project* depends on ink!, i.e. is a contract crate."""
    manifest = _load_manifest(project)
    if manifest is None:
        return False
    dependencies = manifest.get("dependencies", {})
    return "ink" in dependencies


def is_parachain(project: Path) -> bool:
    """Whether *project* is a node workspace (workspace with a node member)."""
    manifest = _load_manifest(project)
    if manifest is None or "workspace" not in manifest:
        return False
    members = manifest["workspace"].get("members", [])
    return any(str(member).split("/")[0] in ("node", "runtime") for member in members) or (
        project / "node"
    ).is_dir()


def detect_target_kind(project: Path) -> TargetKind | None:
    """Work out the kind of an existing project.

    The scaffold marker wins; otherwise ``Cargo.toml`` is inspected.
    """
    recorded = read_target_marker(project)
    if recorded is not None:
        return recorded
    if is_contract(project):
        return TargetKind.CONTRACT
    if is_parachain(project):
        return TargetKind.PARACHAIN
    return None


def ensure_target_kind(project: Path, requested: TargetKind) -> None:
    """Raise :class:`TargetKindMismatch` if *project* records another kind."""
    recorded = read_target_marker(project)
    if recorded is not None and recorded is not requested:
        raise TargetKindMismatch(project, recorded, requested)


def _load_manifest(project: Path) -> dict | None:
    manifest = project / "Cargo.toml"
    if not manifest.is_file():
        return None
    try:
        with manifest.open("rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError:
        return None
