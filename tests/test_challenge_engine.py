"""Tests for the challenge workflow engine."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from boardroom.challenges.engine import ChallengeEngine
from boardroom.challenges.models import ChallengeHistoryQuery
from boardroom.core.board import parse_board_config
from boardroom.core.errors import (
    AlreadyResolvedError,
    GovernanceValidationError,
    NotAuthorizedError,
    NotFoundError,
)
from boardroom.core.types import (
    ChallengeOutcome,
    CounterProposalStatus,
    DecisionStatus,
    DecisionType,
)
from boardroom.decisions.ledger import DecisionLedger
from tests.conftest import board_dict


@pytest.fixture()
def ledger(tmp_path: Path) -> DecisionLedger:
    return DecisionLedger(tmp_path)


@pytest.fixture()
def engine(board, tmp_path: Path, clock) -> ChallengeEngine:
    return ChallengeEngine(board, state_dir=tmp_path, clock=clock)


def _propose(ledger: DecisionLedger, author: str = "ceo", summary: str = "Ship v2 in Q3"):
    return ledger.propose(
        author=author,
        type=DecisionType.PLANNING,
        summary=summary,
        rationale="Market window",
        project="alpha",
        phase=1,
    )


class TestPolicy:
    def test_challengers_come_from_board(self, engine: ChallengeEngine) -> None:
        assert engine.get_challengers("ceo") == ["cto"]
        assert engine.get_challengers("cto") == ["ceo"]
        assert engine.get_challengers("qa") == []
        assert engine.max_rounds == 3
        assert engine.auto_escalation is True

    def test_unchallenged_roles_can_always_execute(self, engine, ledger) -> None:
        dec = _propose(ledger, author="qa")
        assert engine.requires_challenge(dec) is False
        assert engine.can_execute(dec) is True

    def test_challenged_roles_execute_only_when_resolved(self, engine, ledger) -> None:
        dec = _propose(ledger)
        assert engine.requires_challenge(dec) is True
        assert engine.can_execute(dec) is False
        engine.process_challenge(ledger, dec.id, "cto", "accept", "Looks good")
        assert engine.can_execute(ledger.get(dec.id)) is True

    def test_remaining_rounds(self, engine, ledger) -> None:
        dec = _propose(ledger)
        assert engine.remaining_rounds(dec) == 3
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "Too early")
        updated = ledger.get(dec.id)
        assert engine.remaining_rounds(updated) == 2
        assert engine.is_at_round_limit(updated) is False


class TestProcessChallenge:
    def test_three_rounds_auto_escalate(self, engine, ledger) -> None:
        dec = _propose(ledger)
        first = engine.process_challenge(ledger, dec.id, "cto", "challenge", "Scope unclear")
        second = engine.process_challenge(ledger, dec.id, "cto", "challenge", "Still unclear")
        third = engine.process_challenge(ledger, dec.id, "cto", "challenge", "No agreement")

        assert first.outcome == ChallengeOutcome.CHALLENGED
        assert first.requires_revision is True
        assert second.round == 2
        assert third.outcome == ChallengeOutcome.ESCALATED
        assert third.requires_escalation is True
        assert third.round == 3

        stored = ledger.get(dec.id)
        assert stored.status == DecisionStatus.ESCALATED
        assert len(stored.challenge_history) == 3
        assert engine.can_execute(stored) is True

    def test_unauthorized_challenger(self, engine, ledger) -> None:
        dec = _propose(ledger)
        with pytest.raises(NotAuthorizedError, match="'qa' is not authorized"):
            engine.process_challenge(ledger, dec.id, "qa", "challenge", "I object")
        assert ledger.get(dec.id).challenge_rounds == 0

    def test_missing_decision(self, engine, ledger) -> None:
        with pytest.raises(NotFoundError):
            engine.process_challenge(ledger, "DEC-9999", "cto", "challenge", "?")

    def test_resolved_decision_cannot_be_reopened(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "accept", "Fine")
        with pytest.raises(AlreadyResolvedError, match="cannot be reopened"):
            engine.process_challenge(ledger, dec.id, "cto", "challenge", "Changed my mind")

    def test_escalated_decision_cannot_be_reopened(self, engine, ledger) -> None:
        dec = _propose(ledger)
        for i in range(3):
            engine.process_challenge(ledger, dec.id, "cto", "challenge", f"objection {i}")
        with pytest.raises(AlreadyResolvedError):
            engine.process_challenge(ledger, dec.id, "cto", "challenge", "one more")
        assert ledger.get(dec.id).challenge_rounds == 3

    def test_accept_after_challenge(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "Needs data")
        result = engine.process_challenge(ledger, dec.id, "cto", "accept", "Data provided")
        assert result.outcome == ChallengeOutcome.ACCEPTED
        assert result.round == 1
        assert result.decision.status == DecisionStatus.ACCEPTED

    def test_invalid_action_rejected(self, engine, ledger) -> None:
        dec = _propose(ledger)
        with pytest.raises(ValueError):
            engine.process_challenge(ledger, dec.id, "cto", "veto", "No")

    def test_limit_escalates_without_auto_escalation(self, ledger) -> None:
        board = parse_board_config(board_dict(challenge={"max_rounds": 2, "auto_escalation": False}))
        engine = ChallengeEngine(board)
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "one")
        second = engine.process_challenge(ledger, dec.id, "cto", "challenge", "two")
        assert second.outcome == ChallengeOutcome.CHALLENGED
        assert ledger.get(dec.id).status == DecisionStatus.CHALLENGED

        # The next attempt escalates without recording a third round.
        third = engine.process_challenge(ledger, dec.id, "cto", "challenge", "three")
        assert third.outcome == ChallengeOutcome.ESCALATED
        stored = ledger.get(dec.id)
        assert stored.status == DecisionStatus.ESCALATED
        assert stored.challenge_rounds == 2
        assert len(stored.challenge_history) == 2

    def test_single_round_limit(self, ledger) -> None:
        board = parse_board_config(board_dict(challenge={"max_rounds": 1}))
        engine = ChallengeEngine(board)
        dec = _propose(ledger)
        result = engine.process_challenge(ledger, dec.id, "cto", "challenge", "No")
        assert result.outcome == ChallengeOutcome.ESCALATED
        assert result.round == 1


class TestCounterProposals:
    def test_structured_counter_proposal_is_tracked(self, engine, ledger, clock) -> None:
        dec = _propose(ledger)
        result = engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Too risky",
            structured_counter_proposal={
                "summary": "Ship v2 in Q4",
                "rationale": "Allows a beta period",
                "impact": ["Delays revenue", "Reduces defects"],
            },
        )
        cp = result.counter_proposal
        assert cp is not None
        assert cp.id == f"CP-{dec.id}-1"
        assert cp.status == CounterProposalStatus.PENDING
        assert cp.created_at == clock.now
        assert cp.impact == ["Delays revenue", "Reduces defects"]
        # The summary doubles as the round's counter-proposal text
        assert ledger.get(dec.id).challenge_history[0].counter_proposal == "Ship v2 in Q4"

    def test_resolve_counter_proposal(self, engine, ledger, clock) -> None:
        dec = _propose(ledger)
        engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Alt",
            structured_counter_proposal={"summary": "Alt plan", "rationale": "Cheaper"},
        )
        clock.advance(minutes=5)
        resolved = engine.resolve_counter_proposal(f"CP-{dec.id}-1", "rejected", "Not cheaper")
        assert resolved.status == CounterProposalStatus.REJECTED
        assert resolved.resolved_at == clock.now
        assert resolved.resolution_notes == "Not cheaper"
        with pytest.raises(AlreadyResolvedError):
            engine.resolve_counter_proposal(resolved.id, "accepted")

    def test_resolve_requires_resolution_status(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Alt",
            structured_counter_proposal={"summary": "Alt plan", "rationale": "Cheaper"},
        )
        with pytest.raises(GovernanceValidationError):
            engine.resolve_counter_proposal(f"CP-{dec.id}-1", "superseded")
        with pytest.raises(NotFoundError):
            engine.resolve_counter_proposal("CP-DEC-0404-1", "accepted")

    def test_pending_proposals_superseded_on_accept(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Alt",
            structured_counter_proposal={"summary": "Alt plan", "rationale": "Cheaper"},
        )
        engine.process_challenge(ledger, dec.id, "cto", "accept", "Original is fine")
        cp = engine.get_counter_proposal(f"CP-{dec.id}-1")
        assert cp.status == CounterProposalStatus.SUPERSEDED
        assert cp.resolution_notes == "Decision accepted"

    def test_escalation_attaches_superseded_proposal(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "one")
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "two")
        result = engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "three",
            structured_counter_proposal={"summary": "Last alt", "rationale": "Final offer"},
        )
        assert result.outcome == ChallengeOutcome.ESCALATED
        assert result.counter_proposal.status == CounterProposalStatus.SUPERSEDED
        assert result.counter_proposal.resolution_notes == "Auto-escalated at round limit"

    def test_counter_proposals_persist(self, board, tmp_path: Path, ledger) -> None:
        engine = ChallengeEngine(board, state_dir=tmp_path)
        dec = _propose(ledger)
        engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Alt",
            structured_counter_proposal={"summary": "Alt plan", "rationale": "Cheaper"},
        )
        reloaded = ChallengeEngine(board, state_dir=tmp_path)
        assert [cp.id for cp in reloaded.get_counter_proposals(dec.id)] == [f"CP-{dec.id}-1"]
        on_disk = json.loads((tmp_path / "counter_proposals.json").read_text())
        assert on_disk[0]["summary"] == "Alt plan"


class TestAuditTrail:
    def test_only_challenged_decisions_listed(self, engine, ledger) -> None:
        quiet = _propose(ledger, summary="Quiet")
        noisy = _propose(ledger, summary="Noisy")
        engine.process_challenge(ledger, noisy.id, "cto", "challenge", "Hmm")
        trail = engine.get_audit_trail(ledger)
        assert [e.decision_id for e in trail] == [noisy.id]
        assert quiet.id not in {e.decision_id for e in trail}

    def test_filters(self, engine, ledger) -> None:
        a = _propose(ledger, summary="A")
        b = _propose(ledger, author="cto", summary="B")
        for i in range(3):
            engine.process_challenge(ledger, a.id, "cto", "challenge", f"a{i}")
        engine.process_challenge(
            ledger, b.id, "ceo", "challenge", "b0",
            structured_counter_proposal={"summary": "Alt", "rationale": "r"},
        )

        assert [e.decision_id for e in engine.get_audit_trail(ledger, ChallengeHistoryQuery(escalated=True))] == [a.id]
        assert [e.decision_id for e in engine.get_audit_trail(ledger, ChallengeHistoryQuery(challenger="ceo"))] == [b.id]
        assert [e.decision_id for e in engine.get_audit_trail(ledger, ChallengeHistoryQuery(min_rounds=2))] == [a.id]
        assert [
            e.decision_id
            for e in engine.get_audit_trail(ledger, ChallengeHistoryQuery(has_counter_proposals=True))
        ] == [b.id]
        assert [e.decision_id for e in engine.get_audit_trail(ledger, ChallengeHistoryQuery(author="ceo"))] == [a.id]

    def test_resolution_time_only_for_resolved(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "Hmm")
        assert engine.get_audit_trail(ledger)[0].resolution_time_ms is None
        engine.process_challenge(ledger, dec.id, "cto", "accept", "OK")
        entry = engine.get_audit_trail(ledger)[0]
        assert entry.resolution_time_ms is not None
        assert entry.resolution_time_ms >= 0

    def test_export_json(self, engine, ledger) -> None:
        dec = _propose(ledger)
        engine.process_challenge(ledger, dec.id, "cto", "challenge", "Hmm")
        data = json.loads(engine.export_json(ledger))
        assert data[0]["decision_id"] == dec.id
        assert data[0]["total_rounds"] == 1

    def test_export_markdown(self, engine, ledger) -> None:
        dec = _propose(ledger)
        for i in range(3):
            engine.process_challenge(ledger, dec.id, "cto", "challenge", f"objection {i}")
        md = engine.export_markdown(ledger)
        assert md.startswith("# Challenge Audit Report")
        assert "- **Escalation rate:** 100.0%" in md
        assert "- **Average rounds:** 3.00" in md
        assert "### Round 1: cto challenged" in md
        assert "**Escalated for human resolution.**" in md


def _fail_writes(*_args, **_kwargs):
    raise OSError("disk full")


class TestWriteFailures:
    @pytest.fixture()
    def challenged(self, engine, ledger):
        dec = _propose(ledger)
        engine.process_challenge(
            ledger, dec.id, "cto", "challenge", "Alt",
            structured_counter_proposal={"summary": "Alt plan", "rationale": "Cheaper"},
        )
        return dec

    def test_failed_ledger_write_restores_counter_proposals(
        self, engine, ledger, challenged, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("boardroom.decisions.ledger.atomic_write_json", _fail_writes)
        with pytest.raises(OSError):
            engine.process_challenge(ledger, challenged.id, "cto", "accept", "Fine")

        assert engine.get_counter_proposal(f"CP-{challenged.id}-1").status == CounterProposalStatus.PENDING
        on_disk = json.loads((tmp_path / "counter_proposals.json").read_text())
        assert on_disk[0]["status"] == "pending"
        assert ledger.get(challenged.id).status == DecisionStatus.CHALLENGED

        monkeypatch.undo()
        result = engine.process_challenge(ledger, challenged.id, "cto", "accept", "Fine")
        assert result.decision.status == DecisionStatus.ACCEPTED
        assert engine.get_counter_proposal(f"CP-{challenged.id}-1").status == CounterProposalStatus.SUPERSEDED

    def test_failed_supersede_leaves_decision_open(
        self, engine, ledger, challenged, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("boardroom.challenges.engine.atomic_write_json", _fail_writes)
        with pytest.raises(OSError):
            engine.process_challenge(ledger, challenged.id, "cto", "accept", "Fine")

        assert ledger.get(challenged.id).status == DecisionStatus.CHALLENGED
        assert engine.get_counter_proposal(f"CP-{challenged.id}-1").status == CounterProposalStatus.PENDING
