"""popforge configuration.

Centralised, typed configuration for the orchestration engine. All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class RunnerConfig(BaseModel):
    """Limits applied to every external process."""

    output_cap_bytes: int = Field(
        default=1_048_576, ge=1024, description="Per-stream capture limit before truncation"
    )
    kill_grace_seconds: float = Field(default=5.0, gt=0, description="Wait for a killed child to exit")


class ToolchainConfig(BaseModel):
    """Toolchain probing."""

    probe_timeout: float = Field(default=15.0, gt=0, description="Per-tool version query timeout in seconds")


class ResolverConfig(BaseModel):
    """Template fetching."""

    fetch_timeout: float = Field(default=300.0, gt=0, description="git clone timeout in seconds")
    ssh_fallback: bool = Field(default=True, description="Retry a failed https clone over SSH")
    pin_latest_release: bool = Field(
        default=False, description="Clone the newest vX.Y.Z tag when no reference is given"
    )


class RetryConfig(BaseModel):
    """Stage retry policy. A fixed short delay, never exponential."""

    retry_budget: int = Field(default=1, ge=0, description="Extra attempts for retryable failures")
    retry_delay: float = Field(default=2.0, ge=0, description="Seconds between attempts")


class TelemetryConfig(BaseModel):
    """Best-effort anonymous usage reporting."""

    enabled: bool = Field(default=True)
    endpoint: str = Field(default="https://telemetry.popforge.dev/api/v1/events")
    timeout: float = Field(default=2.0, gt=0, le=10, description="Hard send timeout in seconds")


class ContractConfig(BaseModel):
    """Settings for the smart-contract backend."""

    build_timeout: float = Field(default=1800.0, gt=0)
    test_timeout: float = Field(default=1800.0, gt=0)
    deploy_timeout: float = Field(default=300.0, gt=0)
    node_url: str = Field(
        default="ws://127.0.0.1:9944",
        description="Node to instantiate on; a local URL gets a dev node started for the deploy",
    )
    node_startup_timeout: float = Field(default=60.0, gt=0, description="Wait for a started dev node to listen")
    suri: str = Field(default="//Alice", description="Dev account used to instantiate")
    constructor: str = Field(default="new")
    constructor_args: list[str] = Field(default_factory=lambda: ["false"])


class ParachainConfig(BaseModel):
    """Settings for the parachain backend."""

    build_timeout: float = Field(default=7200.0, gt=0)
    test_timeout: float = Field(default=3600.0, gt=0)
    network_config: str = Field(default="network.toml", description="zombienet config, relative to the project")
    relay_chain: str = Field(default="rococo-local")
    para_id: int = Field(default=2000, ge=1000)
    git_init: bool = Field(default=True, description="Create a git repository after scaffolding")


class Config(BaseModel):
    """Global popforge configuration.

    Instances are typically created once by the CLI entry point and then
    passed through the pipeline, the backends and the resolver.
    """

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    contract: ContractConfig = Field(default_factory=ContractConfig)
    parachain: ParachainConfig = Field(default_factory=ParachainConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls, base: "Config | None" = None) -> "Config":
        """Apply environment overrides on top of *base* (or the defaults).

        Recognised variables (all optional):
            POPFORGE_RETRY_BUDGET, POPFORGE_RETRY_DELAY, POPFORGE_OUTPUT_CAP,
            POPFORGE_PROBE_TIMEOUT, POPFORGE_FETCH_TIMEOUT,
            POPFORGE_TELEMETRY (``0`` disables), POPFORGE_TELEMETRY_ENDPOINT,
            POPFORGE_NODE_URL, POPFORGE_SURI, DO_NOT_TRACK (``1`` disables
            telemetry).
        """
        config = base.model_copy(deep=True) if base is not None else cls()
        env = os.environ

        retry_kwargs: dict[str, Any] = config.retry.model_dump()
        if env.get("POPFORGE_RETRY_BUDGET"):
            retry_kwargs["retry_budget"] = int(env["POPFORGE_RETRY_BUDGET"])
        if env.get("POPFORGE_RETRY_DELAY"):
            retry_kwargs["retry_delay"] = float(env["POPFORGE_RETRY_DELAY"])
        config.retry = RetryConfig(**retry_kwargs)

        if env.get("POPFORGE_OUTPUT_CAP"):
            config.runner = RunnerConfig(
                **{**config.runner.model_dump(), "output_cap_bytes": int(env["POPFORGE_OUTPUT_CAP"])}
            )
        if env.get("POPFORGE_PROBE_TIMEOUT"):
            config.toolchain = ToolchainConfig(probe_timeout=float(env["POPFORGE_PROBE_TIMEOUT"]))
        if env.get("POPFORGE_FETCH_TIMEOUT"):
            config.resolver = ResolverConfig(
                **{**config.resolver.model_dump(), "fetch_timeout": float(env["POPFORGE_FETCH_TIMEOUT"])}
            )

        telemetry_kwargs: dict[str, Any] = config.telemetry.model_dump()
        if env.get("POPFORGE_TELEMETRY_ENDPOINT"):
            telemetry_kwargs["endpoint"] = env["POPFORGE_TELEMETRY_ENDPOINT"]
        if env.get("POPFORGE_TELEMETRY", "").strip() in ("0", "false", "off"):
            telemetry_kwargs["enabled"] = False
        if env.get("DO_NOT_TRACK", "").strip() in ("1", "true"):
            telemetry_kwargs["enabled"] = False
        config.telemetry = TelemetryConfig(**telemetry_kwargs)

        contract_kwargs: dict[str, Any] = config.contract.model_dump()
        if env.get("POPFORGE_NODE_URL"):
            contract_kwargs["node_url"] = env["POPFORGE_NODE_URL"]
        if env.get("POPFORGE_SURI"):
            contract_kwargs["suri"] = env["POPFORGE_SURI"]
        config.contract = ContractConfig(**contract_kwargs)

        return config
