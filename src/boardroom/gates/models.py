"""Data models for phase gates and verdicts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from boardroom.core.types import PhaseStatus, VerdictType, ensure_utc, utc_now


class GateVerdict(BaseModel):
    """A verdict issued against one gate for one (project, phase).

    ``expires_at`` only applies to CONDITIONAL verdicts; an expired
    CONDITIONAL blocks advancement through a structural gate.
    """

    gate_id: str
    verdict: VerdictType
    issued_by: str
    timestamp: datetime = Field(default_factory=utc_now)
    tests_run: int = Field(default=0, ge=0)
    tests_passed: int = Field(default=0, ge=0)
    tests_failed: int = Field(default=0, ge=0)
    coverage: str = ""
    blocking_issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    recommendation: str = ""
    expires_at: datetime | None = None
    project: str
    phase: int = Field(ge=0)

    @field_validator("timestamp", "expires_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        # Naive datetimes are taken as UTC.
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_consistency(self) -> GateVerdict:
        if self.tests_passed + self.tests_failed > self.tests_run:
            raise ValueError(
                f"tests_passed ({self.tests_passed}) + tests_failed ({self.tests_failed}) "
                f"exceeds tests_run ({self.tests_run})"
            )
        if self.expires_at is not None and self.verdict != VerdictType.CONDITIONAL:
            raise ValueError("expires_at is only valid on CONDITIONAL verdicts")
        return self


class PhaseState(BaseModel):
    """Phase state machine for one project, created on its first verdict."""

    project: str
    current_phase: int = Field(ge=0)
    phase_name: str
    status: PhaseStatus = PhaseStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    gate_verdicts: list[GateVerdict] = Field(default_factory=list)


class AdvanceCheck(BaseModel):
    """Result of :meth:`PhaseGateEngine.can_advance`."""

    allowed: bool
    blockers: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    conditional: bool = False
    conditions: list[str] = Field(default_factory=list)
    verdict: GateVerdict | None = None


class AdvanceResult(BaseModel):
    """Result of :meth:`PhaseGateEngine.advance_phase`."""

    advanced: bool
    blockers: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    current_phase: int | None = None
    phase_name: str | None = None
    conditional: bool = False
    conditions: list[str] = Field(default_factory=list)


class GateHistoryQuery(BaseModel):
    """Conjunctive filters over every recorded verdict (inclusive time bounds)."""

    project: str | None = None
    phase: int | None = None
    verdict: VerdictType | None = None
    issued_by: str | None = None
    gate_id: str | None = None
    after: datetime | None = None
    before: datetime | None = None
