"""Data models for the decision ledger."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from boardroom.core.types import DecisionStatus, DecisionType, RoundAction, utc_now


class ChallengeRound(BaseModel):
    """One entry in a decision's challenge history."""

    round: int = Field(ge=1)
    challenger: str
    action: RoundAction
    rationale: str
    counter_proposal: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class DecisionRecord(BaseModel):
    """A first-class decision with lineage, never deleted once recorded."""

    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    author: str
    type: DecisionType
    summary: str
    rationale: str
    evidence: list[str] = Field(default_factory=list)
    project: str
    phase: int = Field(ge=0)
    status: DecisionStatus = DecisionStatus.PROPOSED
    challenge_rounds: int = Field(default=0, ge=0)
    challenged_by: str | None = None
    challenge_history: list[ChallengeRound] = Field(default_factory=list)
    supersedes: str | None = None
    superseded_by: str | None = None
    dependencies: list[str] = Field(default_factory=list)


class DecisionQuery(BaseModel):
    """Conjunctive filters for :meth:`DecisionLedger.query`.

    ``after`` / ``before`` are inclusive bounds on the decision timestamp.
    """

    author: str | None = None
    type: DecisionType | None = None
    status: DecisionStatus | None = None
    project: str | None = None
    phase: int | None = None
    challenged: bool | None = None
    depends_on: str | None = None
    supersedes_id: str | None = None
    after: datetime | None = None
    before: datetime | None = None
