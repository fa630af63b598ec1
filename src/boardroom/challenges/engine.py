"""Challenge workflow engine.

Manages the structured challenge process between board roles: who may
challenge whom, how many rounds a decision may go through before it is
escalated, and the counter-proposals raised along the way.

:meth:`ChallengeEngine.can_execute` is the single check collaborators use
before acting on a decision. There is no other route to "executable".
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from boardroom.challenges.models import (
    ChallengeAuditEntry,
    ChallengeHistoryQuery,
    ChallengeResult,
    CounterProposal,
    CounterProposalInput,
    format_counter_proposal_id,
)
from boardroom.core.board import BoardConfig
from boardroom.core.errors import (
    AlreadyResolvedError,
    GovernanceValidationError,
    NotAuthorizedError,
    NotFoundError,
)
from boardroom.core.persistence import atomic_write_json, read_json
from boardroom.core.types import (
    EXECUTABLE_STATUSES,
    RESOLVED_STATUSES,
    ChallengeAction,
    ChallengeOutcome,
    CounterProposalStatus,
    DecisionStatus,
    RoundAction,
    ensure_utc,
    utc_now,
)
from boardroom.decisions.ledger import DecisionLedger
from boardroom.decisions.models import DecisionQuery, DecisionRecord

logger = logging.getLogger(__name__)

_COUNTER_PROPOSALS = TypeAdapter(list[CounterProposal])

_RESOLUTION_STATUSES = frozenset({
    CounterProposalStatus.ACCEPTED,
    CounterProposalStatus.REJECTED,
    CounterProposalStatus.WITHDRAWN,
})


class ChallengeEngine:
    """Round-limited adversarial review over a :class:`DecisionLedger`.

    Args:
        board: Validated board config; supplies the role -> challengers map
            and the round-limit policy.
        state_dir: When given, counter-proposals are persisted atomically to
            ``<state_dir>/counter_proposals.json``.
        clock: Source of the current time (injectable for tests).
    """

    def __init__(
        self,
        board: BoardConfig,
        state_dir: str | Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = board.challenge
        self._challenge_map: dict[str, list[str]] = {
            role: list(role_config.challenges)
            for role, role_config in board.roles.items()
            if role_config.challenges
        }
        self._clock = clock
        self._lock = threading.RLock()
        self._path = Path(state_dir) / "counter_proposals.json" if state_dir else None
        self._counter_proposals: dict[str, CounterProposal] = {}
        self._load()

    # -- Persistence --

    def _load(self) -> None:
        if self._path is None:
            return
        for cp in _COUNTER_PROPOSALS.validate_python(read_json(self._path, default=[])):
            self._counter_proposals[cp.id] = cp

    def _commit(self, *proposals: CounterProposal) -> None:
        staged = dict(self._counter_proposals)
        for cp in proposals:
            staged[cp.id] = cp
        if self._path is not None:
            atomic_write_json(self._path, [cp.model_dump(mode="json") for cp in staged.values()])
        self._counter_proposals = staged

    # -- Policy --

    @property
    def max_rounds(self) -> int:
        return self._config.max_rounds

    @property
    def auto_escalation(self) -> bool:
        return self._config.auto_escalation

    def get_challengers(self, author_role: str) -> list[str]:
        """Roles designated to resolve decisions authored by ``author_role``."""
        return list(self._challenge_map.get(author_role, []))

    def requires_challenge(self, decision: DecisionRecord) -> bool:
        return bool(self._challenge_map.get(decision.author))

    def can_execute(self, decision: DecisionRecord) -> bool:
        """Whether a decision's outcome may be acted on.

        Decisions from roles without configured challengers are always
        executable; all others only once accepted or escalated.
        """
        if not self.requires_challenge(decision):
            return True
        return decision.status in EXECUTABLE_STATUSES

    def remaining_rounds(self, decision: DecisionRecord) -> int:
        """Challenge rounds left before the round limit is reached."""
        return max(0, self._config.max_rounds - decision.challenge_rounds)

    def is_at_round_limit(self, decision: DecisionRecord) -> bool:
        return decision.challenge_rounds >= self._config.max_rounds

    # -- Workflow --

    def process_challenge(
        self,
        ledger: DecisionLedger,
        decision_id: str,
        challenger: str,
        action: ChallengeAction | str,
        rationale: str,
        counter_proposal: str | None = None,
        structured_counter_proposal: CounterProposalInput | dict[str, Any] | None = None,
    ) -> ChallengeResult:
        """Apply one accept/challenge action from a designated challenger.

        Raises:
            NotFoundError: If the decision does not exist.
            NotAuthorizedError: If ``challenger`` is not configured to
                challenge the decision's author.
            AlreadyResolvedError: If the decision is already accepted,
                escalated, superseded or rejected.
        """
        action = ChallengeAction(action)
        structured = (
            CounterProposalInput.model_validate(structured_counter_proposal)
            if structured_counter_proposal is not None
            else None
        )

        with self._lock:
            decision = ledger.get(decision_id)
            if decision is None:
                raise NotFoundError(f"Decision {decision_id} not found")

            if challenger not in self.get_challengers(decision.author):
                raise NotAuthorizedError(
                    f"Role '{challenger}' is not authorized to challenge "
                    f"{decision.author}'s decisions"
                )

            if decision.status in RESOLVED_STATUSES:
                raise AlreadyResolvedError(
                    f"Decision {decision_id} is already {decision.status} and cannot be reopened"
                )

            if action == ChallengeAction.ACCEPT:
                updated = self._close(
                    decision_id, "Decision accepted",
                    lambda: ledger.accept(decision_id, challenger, rationale),
                )
                return ChallengeResult(
                    decision=updated,
                    outcome=ChallengeOutcome.ACCEPTED,
                    round=updated.challenge_rounds,
                    requires_revision=False,
                    requires_escalation=False,
                )

            if self.is_at_round_limit(decision):
                # No further round is recorded once the limit has been used up.
                return self._escalate(ledger, decision_id, "Escalated at round limit")

            text = counter_proposal if counter_proposal is not None else (
                structured.summary if structured else None
            )
            updated = ledger.challenge(decision_id, challenger, rationale, text)

            created: CounterProposal | None = None
            if structured is not None:
                created = self._create_counter_proposal(updated, challenger, structured)

            if self.is_at_round_limit(updated) and self._config.auto_escalation:
                result = self._escalate(ledger, decision_id, "Auto-escalated at round limit")
                if created is not None:
                    result.counter_proposal = self._counter_proposals[created.id].model_copy()
                return result

            return ChallengeResult(
                decision=updated,
                outcome=ChallengeOutcome.CHALLENGED,
                round=updated.challenge_rounds,
                requires_revision=True,
                requires_escalation=False,
                counter_proposal=created,
            )

    def _escalate(self, ledger: DecisionLedger, decision_id: str, note: str) -> ChallengeResult:
        escalated = self._close(decision_id, note, lambda: ledger.escalate(decision_id))
        logger.warning(
            "Decision %s escalated after %d rounds: %s",
            decision_id, escalated.challenge_rounds, note,
        )
        return ChallengeResult(
            decision=escalated,
            outcome=ChallengeOutcome.ESCALATED,
            round=escalated.challenge_rounds,
            requires_revision=False,
            requires_escalation=True,
        )

    def _create_counter_proposal(
        self,
        decision: DecisionRecord,
        proposed_by: str,
        payload: CounterProposalInput,
    ) -> CounterProposal:
        cp = CounterProposal(
            id=format_counter_proposal_id(decision.id, decision.challenge_rounds),
            decision_id=decision.id,
            round=decision.challenge_rounds,
            proposed_by=proposed_by,
            summary=payload.summary,
            rationale=payload.rationale,
            impact=list(payload.impact),
            created_at=self._clock(),
        )
        self._commit(cp)
        logger.info("Counter-proposal %s recorded by %s", cp.id, proposed_by)
        return cp.model_copy()

    def _close(
        self,
        decision_id: str,
        note: str,
        close: Callable[[], DecisionRecord],
    ) -> DecisionRecord:
        """Supersede pending counter-proposals, then close the decision.

        When the ledger write fails the counter-proposals are restored: no
        closed decision keeps a pending counter-proposal, and no open one
        loses its pending counter-proposals.
        """
        previous = self._supersede_pending(decision_id, note)
        try:
            return close()
        except Exception:
            if previous:
                logger.error("Restoring counter-proposals for %s after failed close", decision_id)
                self._commit(*previous)
            raise

    def _supersede_pending(self, decision_id: str, note: str) -> list[CounterProposal]:
        """Supersede every pending counter-proposal; returns their prior state."""
        now = self._clock()
        pending = [
            cp for cp in self._counter_proposals.values()
            if cp.decision_id == decision_id and cp.status == CounterProposalStatus.PENDING
        ]
        superseded = [
            cp.model_copy(update={
                "status": CounterProposalStatus.SUPERSEDED,
                "resolved_at": now,
                "resolution_notes": note,
            })
            for cp in pending
        ]
        if superseded:
            self._commit(*superseded)
        return pending

    # -- Counter-proposals --

    def resolve_counter_proposal(
        self,
        counter_proposal_id: str,
        status: CounterProposalStatus | str,
        notes: str | None = None,
    ) -> CounterProposal:
        """Resolve a pending counter-proposal as accepted, rejected or withdrawn.

        Raises:
            NotFoundError: If the counter-proposal does not exist.
            GovernanceValidationError: If ``status`` is not a resolution state.
            AlreadyResolvedError: If it is no longer pending.
        """
        status = CounterProposalStatus(status)
        if status not in _RESOLUTION_STATUSES:
            raise GovernanceValidationError(
                f"'{status}' is not a counter-proposal resolution; "
                f"expected one of {sorted(_RESOLUTION_STATUSES)}"
            )
        with self._lock:
            cp = self._counter_proposals.get(counter_proposal_id)
            if cp is None:
                raise NotFoundError(f"Counter-proposal {counter_proposal_id} not found")
            if cp.status != CounterProposalStatus.PENDING:
                raise AlreadyResolvedError(
                    f"Counter-proposal {counter_proposal_id} is already {cp.status}"
                )
            resolved = cp.model_copy(update={
                "status": status,
                "resolved_at": self._clock(),
                "resolution_notes": notes,
            })
            self._commit(resolved)
            logger.info("Counter-proposal %s resolved as %s", counter_proposal_id, status)
            return resolved.model_copy()

    def get_counter_proposals(self, decision_id: str) -> list[CounterProposal]:
        return sorted(
            (cp.model_copy() for cp in self._counter_proposals.values() if cp.decision_id == decision_id),
            key=lambda cp: cp.round,
        )

    def get_counter_proposal(self, counter_proposal_id: str) -> CounterProposal | None:
        cp = self._counter_proposals.get(counter_proposal_id)
        return cp.model_copy() if cp else None

    # -- Audit trail --

    def get_audit_trail(
        self,
        ledger: DecisionLedger,
        query: ChallengeHistoryQuery | None = None,
    ) -> list[ChallengeAuditEntry]:
        """Every challenged decision joined with its rounds and counter-proposals.

        Sorted newest proposal first.
        """
        query = query or ChallengeHistoryQuery()
        after = ensure_utc(query.after) if query.after else None
        before = ensure_utc(query.before) if query.before else None

        decisions = ledger.query(DecisionQuery(
            challenged=True,
            author=query.author,
            project=query.project,
            phase=query.phase,
        ))

        entries: list[ChallengeAuditEntry] = []
        for decision in decisions:
            proposals = self.get_counter_proposals(decision.id)
            challenge_events = [
                r for r in decision.challenge_history if r.action == RoundAction.CHALLENGED
            ]
            escalated = decision.status == DecisionStatus.ESCALATED

            if query.challenger is not None and not any(
                r.challenger == query.challenger for r in challenge_events
            ):
                continue
            if query.escalated is not None and escalated != query.escalated:
                continue
            if query.has_counter_proposals is not None and bool(proposals) != query.has_counter_proposals:
                continue
            if query.min_rounds is not None and decision.challenge_rounds < query.min_rounds:
                continue
            if (after or before) and not any(
                (after is None or r.timestamp >= after) and (before is None or r.timestamp <= before)
                for r in challenge_events
            ):
                continue

            entries.append(ChallengeAuditEntry(
                decision_id=decision.id,
                decision_summary=decision.summary,
                decision_author=decision.author,
                project=decision.project,
                phase=decision.phase,
                current_status=decision.status,
                total_rounds=decision.challenge_rounds,
                challenge_history=decision.challenge_history,
                counter_proposals=proposals,
                escalated=escalated,
                proposed_at=decision.timestamp,
                resolution_time_ms=_resolution_time_ms(decision),
            ))

        entries.sort(key=lambda e: (e.proposed_at, e.decision_id), reverse=True)
        return entries

    def export_json(self, ledger: DecisionLedger, query: ChallengeHistoryQuery | None = None) -> str:
        return json.dumps(
            [entry.model_dump(mode="json") for entry in self.get_audit_trail(ledger, query)],
            indent=2,
        )

    def export_markdown(self, ledger: DecisionLedger, query: ChallengeHistoryQuery | None = None) -> str:
        """Markdown challenge report with per-round narrative and statistics."""
        entries = self.get_audit_trail(ledger, query)
        escalated = sum(1 for e in entries if e.escalated)
        proposal_count = sum(len(e.counter_proposals) for e in entries)
        escalation_rate = (escalated / len(entries) * 100) if entries else 0.0
        average_rounds = (sum(e.total_rounds for e in entries) / len(entries)) if entries else 0.0

        lines = [
            "# Challenge Audit Report",
            "",
            "## Summary",
            "",
            f"- **Challenged decisions:** {len(entries)}",
            f"- **Escalated:** {escalated}",
            f"- **Escalation rate:** {escalation_rate:.1f}%",
            f"- **Average rounds:** {average_rounds:.2f}",
            f"- **Counter-proposals:** {proposal_count}",
            f"- **Round limit:** {self._config.max_rounds}"
            f" (auto-escalation {'on' if self._config.auto_escalation else 'off'})",
            "",
        ]

        for entry in entries:
            lines.append(f"## {entry.decision_id}: {entry.decision_summary}")
            lines.append("")
            lines.append(f"- **Author:** {entry.decision_author}")
            lines.append(f"- **Project:** {entry.project} (phase {entry.phase})")
            lines.append(f"- **Status:** {entry.current_status}")
            lines.append(f"- **Rounds:** {entry.total_rounds}")
            if entry.resolution_time_ms is not None:
                lines.append(f"- **Resolution time:** {entry.resolution_time_ms} ms")
            lines.append("")

            for r in entry.challenge_history:
                lines.append(f"### Round {r.round}: {r.challenger} {r.action}")
                lines.append("")
                lines.append(f"> {r.rationale}")
                if r.counter_proposal:
                    lines.append("")
                    lines.append(f"Counter-proposal: {r.counter_proposal}")
                lines.append("")

            if entry.counter_proposals:
                lines.append("### Counter-proposals")
                lines.append("")
                for cp in entry.counter_proposals:
                    lines.append(f"- **{cp.id}** ({cp.status}) by {cp.proposed_by}: {cp.summary}")
                    for item in cp.impact:
                        lines.append(f"  - Impact: {item}")
                    if cp.resolution_notes:
                        lines.append(f"  - Resolution: {cp.resolution_notes}")
                lines.append("")

            if entry.escalated:
                lines.append("**Escalated for human resolution.**")
                lines.append("")
            lines.append("---")
            lines.append("")
        return "\n".join(lines)


def _resolution_time_ms(decision: DecisionRecord) -> int | None:
    if decision.status not in RESOLVED_STATUSES or not decision.challenge_history:
        return None
    last_event = decision.challenge_history[-1].timestamp
    return int((last_event - decision.timestamp).total_seconds() * 1000)
