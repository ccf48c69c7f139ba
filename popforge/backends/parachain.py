"""Parachain backend (Substrate / Polkadot SDK node workspaces)."""

from __future__ import annotations

import tomllib
from pathlib import Path

from rich.markup import escape

from popforge.backends.base import Backend, Invocation, TargetInfo
from popforge.models import StageOutcome, TargetKind
from popforge.runner import RunError
from popforge.scaffolder.markers import write_target_marker
from popforge.scaffolder.resolver import MaterializedTemplate
from popforge.scaffolder.templates import TemplateRenderer
from popforge.utils import console, print_warning

DEFAULT_NODE_BINARY = "parachain-template-node"


def node_binary_name(project: Path) -> str:
    """Name of the node binary produced by ``cargo build``.

    Read from ``node/Cargo.toml`` (a ``[[bin]]`` entry first, then the package
    name); falls back to :data:`DEFAULT_NODE_BINARY`.
    """
    manifest = project / "node" / "Cargo.toml"
    if not manifest.is_file():
        return DEFAULT_NODE_BINARY
    try:
        with manifest.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError:
        return DEFAULT_NODE_BINARY
    for binary in data.get("bin", []):
        if binary.get("name"):
            return binary["name"]
    return data.get("package", {}).get("name") or DEFAULT_NODE_BINARY


class ParachainBackend(Backend):
    """Builds node binaries and spawns a local relay + parachain network."""

    kind = TargetKind.PARACHAIN
    name = "parachain"

    def __init__(self, runner, config=None, renderer: TemplateRenderer | None = None) -> None:
        super().__init__(runner, config)
        self.renderer = renderer or TemplateRenderer()

    async def scaffold_hook(self, project: Path, materialized: MaterializedTemplate) -> StageOutcome:
        settings = self.config.parachain
        await write_target_marker(
            project,
            self.kind,
            name=project.name,
            template=materialized.template,
            reference=materialized.reference,
            renderer=self.renderer,
        )

        notes = [f"parachain project {project.name} ready"]
        network = project / settings.network_config
        if not network.exists():
            await self.renderer.render_to_file(
                "network.toml.j2",
                network,
                {
                    "name": project.name,
                    "relay_chain": settings.relay_chain,
                    "para_id": settings.para_id,
                    "node_command": f"./target/release/{node_binary_name(project)}",
                },
            )
            notes.append(f"wrote default {settings.network_config}")

        if settings.git_init and not (project / ".git").exists():
            if await self._git_init(project):
                notes.append("initialized git repository")

        return StageOutcome.success("; ".join(notes))

    async def _git_init(self, project: Path) -> bool:
        """Create a repository with an initial commit; warn instead of failing."""
        steps = [
            ["init", "--quiet"],
            ["add", "--all"],
            ["commit", "--quiet", "--message", "initialized parachain"],
        ]
        try:
            for args in steps:
                await self.runner.run("git", args, cwd=project, timeout=60.0)
        except RunError as exc:
            print_warning(f"  Skipping git initialization: {escape(str(exc).splitlines()[0])}")
            return False
        console.print("  [green]+[/green] Initialized git repository")
        return True

    def build_invocation(self, project: Path) -> Invocation:
        return Invocation("cargo", ["build", "--release"], timeout=self.config.parachain.build_timeout)

    def test_invocation(self, project: Path) -> Invocation:
        return Invocation("cargo", ["test", "--release"], timeout=self.config.parachain.test_timeout)

    def deploy_precondition(self, project: Path) -> str | None:
        network = project / self.config.parachain.network_config
        if not network.is_file():
            return f"Network configuration not found: {network}"
        return None

    def deploy_invocation(self, project: Path) -> Invocation:
        # Runs until the network stops or the user interrupts it.
        return Invocation(
            "zombienet",
            ["--provider", "native", "spawn", self.config.parachain.network_config],
            timeout=None,
        )

    def target_info(self) -> TargetInfo:
        build = self.build_invocation(Path("."))
        test = self.test_invocation(Path("."))
        deploy = self.deploy_invocation(Path("."))
        return TargetInfo(
            kind=self.kind,
            backend=self.name,
            description="Parachain node built as a native binary and run on a local zombienet network",
            artifact_dir="target/release",
            build_command=build.describe(),
            test_command=test.describe(),
            deploy_command=deploy.describe(),
        )
