"""Challenge workflow: round-limited adversarial review of decisions."""

from boardroom.challenges.engine import ChallengeEngine
from boardroom.challenges.models import (
    ChallengeAuditEntry,
    ChallengeHistoryQuery,
    ChallengeResult,
    CounterProposal,
    CounterProposalInput,
)

__all__ = [
    "ChallengeAuditEntry",
    "ChallengeEngine",
    "ChallengeHistoryQuery",
    "ChallengeResult",
    "CounterProposal",
    "CounterProposalInput",
]
