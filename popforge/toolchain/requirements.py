"""Toolchain requirements per target kind."""

from __future__ import annotations

from popforge.models import TargetKind
from popforge.toolchain.models import ToolchainRequirement

_RUSTUP_HINT = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh"

CONTRACT_REQUIREMENTS: list[ToolchainRequirement] = [
    ToolchainRequirement(name="rustc", min_version="1.70.0", install_hint=_RUSTUP_HINT),
    ToolchainRequirement(name="cargo", min_version="1.70.0", install_hint=_RUSTUP_HINT),
    ToolchainRequirement(
        name="cargo-contract",
        min_version="4.0.0",
        install_hint="cargo install --force --locked cargo-contract",
        version_command=("cargo", "contract", "--version"),
    ),
    ToolchainRequirement(
        name="substrate-contracts-node",
        min_version="0.30.0",
        install_hint="cargo install contracts-node",
        deploy_only=True,
    ),
]

PARACHAIN_REQUIREMENTS: list[ToolchainRequirement] = [
    ToolchainRequirement(name="git", min_version="2.0.0", install_hint="https://git-scm.com/downloads"),
    ToolchainRequirement(name="rustc", min_version="1.74.0", install_hint=_RUSTUP_HINT),
    ToolchainRequirement(name="cargo", min_version="1.74.0", install_hint=_RUSTUP_HINT),
    ToolchainRequirement(
        name="protoc",
        min_version="3.15.0",
        install_hint="apt install protobuf-compiler  (or: brew install protobuf)",
    ),
    ToolchainRequirement(
        name="zombienet",
        min_version="1.3.0",
        install_hint="https://github.com/paritytech/zombienet/releases",
        deploy_only=True,
    ),
]

_REQUIREMENTS: dict[TargetKind, list[ToolchainRequirement]] = {
    TargetKind.CONTRACT: CONTRACT_REQUIREMENTS,
    TargetKind.PARACHAIN: PARACHAIN_REQUIREMENTS,
}


def requirements_for(kind: TargetKind, include_deploy: bool = False) -> list[ToolchainRequirement]:
    """Return the ordered requirement list for *kind*."""
    return [req for req in _REQUIREMENTS[kind] if include_deploy or not req.deploy_only]
