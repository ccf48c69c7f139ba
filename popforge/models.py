"""Core data model for the popforge pipeline.

Pydantic v2 models shared by every layer: the target kind, the canonical stage
order, per-stage outcomes, the aggregated pipeline result and the anonymized
telemetry event.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TargetKind(str, Enum):
    """Category of project managed by the pipeline."""

    CONTRACT = "contract"
    PARACHAIN = "parachain"


class PipelineStage(str, Enum):
    """Pipeline stages, declared in canonical execution order."""

    SCAFFOLD = "scaffold"
    VALIDATE_TOOLCHAIN = "validate-toolchain"
    BUILD = "build"
    TEST = "test"
    DEPLOY = "deploy"

    @classmethod
    def canonical_order(cls, include_deploy: bool = False) -> list["PipelineStage"]:
        """Return the stages to run, with Deploy only when requested."""
        stages = list(cls)
        if not include_deploy:
            stages.remove(cls.DEPLOY)
        return stages


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    """Terminal state of a pipeline run."""

    COMPLETED = "completed"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Stage outcomes
# ---------------------------------------------------------------------------


class StageOutcome(BaseModel):
    """Result of executing (or skipping) a single stage.

    Use the :meth:`success`, :meth:`failed` and :meth:`skipped` constructors
    rather than building instances directly.
    """

    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    summary: str = Field(default="", description="Short description of what succeeded")
    error: str = Field(default="", description="Failure message, usually with captured stderr")
    retryable: bool = Field(default=False, description="Whether re-attempting may succeed")
    reason: str = Field(default="", description="Why the stage was skipped")

    @classmethod
    def success(cls, summary: str = "") -> "StageOutcome":
        return cls(status=OutcomeStatus.SUCCESS, summary=summary)

    @classmethod
    def failed(cls, error: str, retryable: bool = False) -> "StageOutcome":
        return cls(status=OutcomeStatus.FAILED, error=error, retryable=retryable)

    @classmethod
    def skipped(cls, reason: str) -> "StageOutcome":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason)

    @property
    def is_success(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.status is OutcomeStatus.SKIPPED

    def message(self) -> str:
        """Return whichever text field is relevant for this status."""
        if self.is_failed:
            return self.error
        if self.is_skipped:
            return self.reason
        return self.summary


class StageRecord(BaseModel):
    """Final outcome of one attempted stage, including how often it ran."""

    stage: PipelineStage
    outcome: StageOutcome
    attempts: int = Field(default=1, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)


class PipelineResult(BaseModel):
    """Ordered record of every attempted stage in a single run.

    The stage sequence is always a prefix of the canonical order and ends at
    the first failed record.
    """

    target_kind: TargetKind
    project_path: str = Field(default="")
    backend: str = Field(default="", description="Name of the backend variant that ran the stages")
    status: PipelineStatus = Field(default=PipelineStatus.ABORTED)
    stages: list[StageRecord] = Field(default_factory=list)
    toolchain: dict[str, str | None] = Field(
        default_factory=dict, description="Detected tool versions (None when absent)"
    )
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        return self.status is PipelineStatus.COMPLETED

    @property
    def attempted_stages(self) -> list[PipelineStage]:
        return [record.stage for record in self.stages]

    @property
    def total_retries(self) -> int:
        return sum(record.retries for record in self.stages)

    def first_failure(self) -> StageRecord | None:
        """Return the first failed stage record, if any."""
        for record in self.stages:
            if record.outcome.is_failed:
                return record
        return None

    def record_for(self, stage: PipelineStage) -> StageRecord | None:
        for record in self.stages:
            if record.stage is stage:
                return record
        return None


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class TelemetryEvent(BaseModel):
    """Anonymized usage event.

    Only enumerated values and an opaque session id are carried; paths,
    project names and source never leave the host.
    """

    model_config = ConfigDict(frozen=True)

    event: str
    session_id: str
    target_kind: TargetKind
    outcome: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
