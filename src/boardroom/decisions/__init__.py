"""Decision ledger: append-only decision records with lineage."""

from boardroom.decisions.ledger import DecisionLedger
from boardroom.decisions.models import ChallengeRound, DecisionQuery, DecisionRecord

__all__ = ["ChallengeRound", "DecisionLedger", "DecisionQuery", "DecisionRecord"]
