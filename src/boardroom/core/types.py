"""Core type definitions shared across all Boardroom modules."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum


def utc_now() -> datetime:
    """Timezone-aware current time, used as the default clock everywhere."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so filters compare cleanly."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DecisionType(StrEnum):
    """Category of a recorded decision."""

    ARCHITECTURE = "architecture"
    PLANNING = "planning"
    RESOURCE = "resource"
    SCOPE = "scope"
    TECHNICAL = "technical"
    PROCESS = "process"


class DecisionStatus(StrEnum):
    """Lifecycle status of a decision record."""

    PROPOSED = "proposed"
    CHALLENGED = "challenged"
    ACCEPTED = "accepted"
    ESCALATED = "escalated"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"


# Statuses from which no further challenge round may be processed.
RESOLVED_STATUSES: frozenset[DecisionStatus] = frozenset({
    DecisionStatus.ACCEPTED,
    DecisionStatus.ESCALATED,
    DecisionStatus.SUPERSEDED,
    DecisionStatus.REJECTED,
})

# Statuses that let a challenged author act on the decision.
EXECUTABLE_STATUSES: frozenset[DecisionStatus] = frozenset({
    DecisionStatus.ACCEPTED,
    DecisionStatus.ESCALATED,
})


class RoundAction(StrEnum):
    """Action recorded in a single challenge round."""

    CHALLENGED = "challenged"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ChallengeAction(StrEnum):
    """Action a challenger may take through the challenge workflow."""

    ACCEPT = "accept"
    CHALLENGE = "challenge"


class ChallengeOutcome(StrEnum):
    ACCEPTED = "accepted"
    CHALLENGED = "challenged"
    ESCALATED = "escalated"


class CounterProposalStatus(StrEnum):
    """Counter-proposal lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    SUPERSEDED = "superseded"


class VerdictType(StrEnum):
    """Gate verdict outcome."""

    PASS = "PASS"
    FAIL = "FAIL"
    CONDITIONAL = "CONDITIONAL"


class PhaseStatus(StrEnum):
    """Status of a project's current phase."""

    IN_PROGRESS = "in_progress"
    GATED_PASS = "gated_pass"
    GATED_FAIL = "gated_fail"
    GATED_CONDITIONAL = "gated_conditional"


class ViolationType(StrEnum):
    """Reason category for a denied write."""

    GOVERNANCE_ASSET = "governance_asset"
    OUT_OF_SCOPE = "out_of_scope"
    CROSS_TEAM = "cross_team"
