"""Data models for the challenge workflow."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from boardroom.core.types import ChallengeOutcome, CounterProposalStatus, utc_now
from boardroom.decisions.models import ChallengeRound, DecisionRecord


def format_counter_proposal_id(decision_id: str, round_number: int) -> str:
    return f"CP-{decision_id}-{round_number}"


class CounterProposalInput(BaseModel):
    """Structured alternative supplied alongside a challenge."""

    summary: str
    rationale: str
    impact: list[str] = Field(default_factory=list)


class CounterProposal(BaseModel):
    """A tracked alternative proposal attached to one challenge round."""

    id: str
    decision_id: str
    round: int = Field(ge=1)
    proposed_by: str
    summary: str
    rationale: str
    impact: list[str] = Field(default_factory=list)
    status: CounterProposalStatus = CounterProposalStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class ChallengeResult(BaseModel):
    """Outcome of a single :meth:`ChallengeEngine.process_challenge` call."""

    decision: DecisionRecord
    outcome: ChallengeOutcome
    round: int
    requires_revision: bool
    requires_escalation: bool
    counter_proposal: CounterProposal | None = None


class ChallengeAuditEntry(BaseModel):
    """Denormalized view of one challenged decision for compliance review."""

    decision_id: str
    decision_summary: str
    decision_author: str
    project: str
    phase: int
    current_status: str
    total_rounds: int
    challenge_history: list[ChallengeRound] = Field(default_factory=list)
    counter_proposals: list[CounterProposal] = Field(default_factory=list)
    escalated: bool
    proposed_at: datetime
    # Milliseconds from proposal to the last challenge event, None while open
    resolution_time_ms: int | None = None


class ChallengeHistoryQuery(BaseModel):
    """Conjunctive filters for the challenge audit trail.

    ``after`` / ``before`` match decisions with at least one challenge event
    inside the (inclusive) window.
    """

    author: str | None = None
    challenger: str | None = None
    project: str | None = None
    phase: int | None = None
    escalated: bool | None = None
    has_counter_proposals: bool | None = None
    after: datetime | None = None
    before: datetime | None = None
    min_rounds: int | None = None
