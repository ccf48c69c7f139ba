"""Smart-contract backend (ink! contracts built with cargo-contract)."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlsplit

from rich.markup import escape

from popforge.backends.base import Backend, Invocation, OrderViolation, TargetInfo
from popforge.models import StageOutcome, TargetKind
from popforge.runner import RunError
from popforge.scaffolder.markers import write_target_marker
from popforge.scaffolder.resolver import MaterializedTemplate
from popforge.toolchain import ToolchainRequirement
from popforge.utils import console, is_port_open, wait_for_port

NODE_BINARY = "substrate-contracts-node"

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


def node_endpoint(url: str) -> tuple[str, int]:
    """Host and port of a node RPC URL (``ws://host:port``)."""
    parts = urlsplit(url)
    default_port = 443 if parts.scheme in ("wss", "https") else 9944
    return parts.hostname or "127.0.0.1", parts.port or default_port


def is_local_url(url: str) -> bool:
    host, _ = node_endpoint(url)
    return host in LOCAL_HOSTS


class ContractBackend(Backend):
    """Compiles contracts to Wasm bundles and instantiates them on a dev node.

    When ``contract.node_url`` points at this machine, deploy starts
    ``substrate-contracts-node --dev`` for the duration of the instantiate
    call, unless a node is already listening there. A remote URL is used
    as-is and the node binary is not required.
    """

    kind = TargetKind.CONTRACT
    name = "contract"

    @property
    def uses_local_node(self) -> bool:
        return is_local_url(self.config.contract.node_url)

    def requirements(self, include_deploy: bool = False) -> list[ToolchainRequirement]:
        requirements = super().requirements(include_deploy)
        if self.uses_local_node:
            return requirements
        return [req for req in requirements if req.name != NODE_BINARY]

    async def scaffold_hook(self, project: Path, materialized: MaterializedTemplate) -> StageOutcome:
        if not (project / "Cargo.toml").is_file():
            return StageOutcome.failed(
                f"Template for {project.name} has no Cargo.toml; not a contract crate"
            )
        await write_target_marker(
            project,
            self.kind,
            name=project.name,
            template=materialized.template,
            reference=materialized.reference,
        )
        return StageOutcome.success(f"contract project {project.name} ready")

    async def deploy(self, project: Path) -> StageOutcome:
        if not self._tested:
            raise OrderViolation("deploy", "test", self.name)
        if not self.uses_local_node:
            return await super().deploy(project)

        settings = self.config.contract
        host, port = node_endpoint(settings.node_url)
        if await is_port_open(host, port):
            console.print(f"  [dim]Using the node already listening on {escape(settings.node_url)}[/dim]")
            return await super().deploy(project)

        args = ["--dev", "--rpc-port", str(port)]
        console.print(f"  [dim]$ {escape(NODE_BINARY)} {' '.join(args)} &[/dim]")
        try:
            node = await self.runner.start(NODE_BINARY, args, cwd=project)
        except RunError as exc:
            return StageOutcome.failed(str(exc))

        try:
            ready = await wait_for_port(
                host, port, timeout=settings.node_startup_timeout, alive=lambda: node.running
            )
            if not ready:
                output = await node.stop()
                message = (
                    f"{NODE_BINARY} did not accept connections on {settings.node_url} "
                    f"within {settings.node_startup_timeout:g}s"
                )
                detail = output.tail()
                if detail:
                    message = f"{message}\n{detail}"
                return StageOutcome.failed(message, retryable=True)
            return await super().deploy(project)
        finally:
            await node.stop()

    def build_invocation(self, project: Path) -> Invocation:
        return Invocation(
            "cargo",
            ["contract", "build", "--release"],
            timeout=self.config.contract.build_timeout,
        )

    def test_invocation(self, project: Path) -> Invocation:
        return Invocation("cargo", ["test"], timeout=self.config.contract.test_timeout)

    def deploy_invocation(self, project: Path) -> Invocation:
        settings = self.config.contract
        args = [
            "contract",
            "instantiate",
            "--constructor",
            settings.constructor,
        ]
        if settings.constructor_args:
            args += ["--args", *settings.constructor_args]
        args += [
            "--suri",
            settings.suri,
            "--url",
            settings.node_url,
            "--execute",
            "--skip-confirm",
        ]
        return Invocation("cargo", args, timeout=settings.deploy_timeout)

    def target_info(self) -> TargetInfo:
        build = self.build_invocation(Path("."))
        test = self.test_invocation(Path("."))
        deploy = self.deploy_invocation(Path("."))
        return TargetInfo(
            kind=self.kind,
            backend=self.name,
            description="ink! smart contract compiled to a Wasm bundle",
            artifact_dir="target/ink",
            build_command=build.describe(),
            test_command=test.describe(),
            deploy_command=deploy.describe(),
        )
