"""popforge backends.

One backend per target kind, selected once per pipeline run:

    ContractBackend   - ink! contracts via cargo-contract
    ParachainBackend  - node workspaces via cargo and zombienet
"""

from __future__ import annotations

from popforge.backends.base import (
    Backend,
    Invocation,
    OrderViolation,
    TargetInfo,
    is_transient,
)
from popforge.backends.contract import ContractBackend, is_local_url, node_endpoint
from popforge.backends.parachain import ParachainBackend, node_binary_name
from popforge.config import Config
from popforge.models import TargetKind
from popforge.runner import ProcessRunner

BACKENDS: dict[TargetKind, type[Backend]] = {
    TargetKind.CONTRACT: ContractBackend,
    TargetKind.PARACHAIN: ParachainBackend,
}


def create_backend(kind: TargetKind, runner: ProcessRunner, config: Config | None = None) -> Backend:
    """Instantiate the backend variant that handles *kind*."""
    return BACKENDS[kind](runner, config)


__all__ = [
    "BACKENDS",
    "Backend",
    "ContractBackend",
    "Invocation",
    "OrderViolation",
    "ParachainBackend",
    "TargetInfo",
    "create_backend",
    "is_local_url",
    "is_transient",
    "node_endpoint",
    "node_binary_name",
]
