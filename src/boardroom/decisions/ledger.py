"""Append-only decision ledger with lineage indices.

Decisions are kept in an insertion-ordered arena keyed by id. Two forward
indices (``superseded_by`` and ``dependents``) are maintained incrementally
when a decision is proposed, so lineage lookups never scan the arena.

Every mutation is staged on a copy, persisted atomically to
``<state_dir>/decisions.json`` and only then installed in memory. A write
failure therefore leaves both the file and the in-memory ledger untouched.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections import deque
from pathlib import Path

from pydantic import TypeAdapter

from boardroom.core.errors import AlreadyResolvedError, GovernanceValidationError, NotFoundError
from boardroom.core.persistence import atomic_write_json, read_json
from boardroom.core.types import (
    RESOLVED_STATUSES,
    DecisionStatus,
    DecisionType,
    RoundAction,
    ensure_utc,
)
from boardroom.decisions.models import ChallengeRound, DecisionQuery, DecisionRecord

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^DEC-(\d+)$")
_RECORDS = TypeAdapter(list[DecisionRecord])


def format_decision_id(sequence: int) -> str:
    return f"DEC-{sequence:04d}"


class DecisionLedger:
    """Decision store for one project state directory.

    Args:
        state_dir: Directory holding ``decisions.json``. One ledger instance
            should own a given directory; mutations are serialized with an
            internal lock.
        file_name: Override the ledger file name.
    """

    def __init__(self, state_dir: str | Path, file_name: str = "decisions.json") -> None:
        self._path = Path(state_dir) / file_name
        self._lock = threading.RLock()
        self._decisions: dict[str, DecisionRecord] = {}
        self._superseded_by: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] = {}
        self._next_sequence = 1
        self._load()

    # -- Persistence --

    def _load(self) -> None:
        raw = read_json(self._path, default=[])
        for record in _RECORDS.validate_python(raw):
            self._decisions[record.id] = record
            self._index(record)
            match = _ID_PATTERN.match(record.id)
            if match:
                self._next_sequence = max(self._next_sequence, int(match.group(1)) + 1)
        if self._decisions:
            logger.debug(
                "Loaded %d decisions from %s (next id %s)",
                len(self._decisions), self._path, format_decision_id(self._next_sequence),
            )

    def _commit(self, *records: DecisionRecord) -> None:
        """Persist the arena with ``records`` applied, then install them."""
        staged = dict(self._decisions)
        for record in records:
            staged[record.id] = record
        atomic_write_json(self._path, [r.model_dump(mode="json") for r in staged.values()])
        self._decisions = staged

    def _index(self, record: DecisionRecord) -> None:
        if record.supersedes:
            self._superseded_by.setdefault(record.supersedes, []).append(record.id)
        for dependency in record.dependencies:
            self._dependents.setdefault(dependency, []).append(record.id)

    def _require(self, decision_id: str) -> DecisionRecord:
        record = self._decisions.get(decision_id)
        if record is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        return record

    # -- Mutations --

    def propose(
        self,
        *,
        author: str,
        type: DecisionType | str,
        summary: str,
        rationale: str,
        project: str,
        phase: int,
        evidence: list[str] | None = None,
        supersedes: str | None = None,
        dependencies: list[str] | None = None,
    ) -> DecisionRecord:
        """Record a new decision with status ``proposed``.

        Raises:
            NotFoundError: If ``supersedes`` or a dependency does not exist.
            GovernanceValidationError: If a dependency is listed twice.
        """
        dependencies = list(dependencies or [])
        with self._lock:
            if supersedes is not None:
                self._require(supersedes)
            for dependency in dependencies:
                self._require(dependency)
            if len(set(dependencies)) != len(dependencies):
                raise GovernanceValidationError(
                    f"Duplicate dependency ids in {dependencies}"
                )

            record = DecisionRecord(
                id=format_decision_id(self._next_sequence),
                author=author,
                type=DecisionType(type),
                summary=summary,
                rationale=rationale,
                evidence=list(evidence or []),
                project=project,
                phase=phase,
                supersedes=supersedes,
                dependencies=dependencies,
            )
            self._commit(record)
            self._next_sequence += 1
            self._index(record)
            logger.info("Decision %s proposed by %s: %s", record.id, author, summary)
            return record.model_copy(deep=True)

    def challenge(
        self,
        decision_id: str,
        challenger: str,
        rationale: str,
        counter_proposal: str | None = None,
    ) -> DecisionRecord:
        """Record one challenge round against a proposed or challenged decision."""
        with self._lock:
            record = self._require(decision_id).model_copy(deep=True)
            if record.status not in (DecisionStatus.PROPOSED, DecisionStatus.CHALLENGED):
                raise AlreadyResolvedError(
                    f"Decision {decision_id} is {record.status}, cannot challenge"
                )
            record.challenged_by = challenger
            record.challenge_rounds += 1
            record.status = DecisionStatus.CHALLENGED
            record.challenge_history.append(ChallengeRound(
                round=record.challenge_rounds,
                challenger=challenger,
                action=RoundAction.CHALLENGED,
                rationale=rationale,
                counter_proposal=counter_proposal,
            ))
            self._commit(record)
            logger.info(
                "Decision %s challenged by %s (round %d)",
                decision_id, challenger, record.challenge_rounds,
            )
            return record.model_copy(deep=True)

    def accept(self, decision_id: str, acceptor: str, rationale: str) -> DecisionRecord:
        """Accept an unresolved decision."""
        return self._close(decision_id, acceptor, rationale, RoundAction.ACCEPTED, DecisionStatus.ACCEPTED)

    def reject(self, decision_id: str, rejector: str, rationale: str) -> DecisionRecord:
        """Reject an unresolved decision. Rejection is terminal."""
        return self._close(decision_id, rejector, rationale, RoundAction.REJECTED, DecisionStatus.REJECTED)

    def _close(
        self,
        decision_id: str,
        actor: str,
        rationale: str,
        action: RoundAction,
        status: DecisionStatus,
    ) -> DecisionRecord:
        with self._lock:
            record = self._require(decision_id).model_copy(deep=True)
            if record.status in RESOLVED_STATUSES:
                raise AlreadyResolvedError(
                    f"Decision {decision_id} is already {record.status}"
                )
            record.status = status
            # The closing entry occupies the slot after the last challenge round.
            record.challenge_history.append(ChallengeRound(
                round=record.challenge_rounds + 1,
                challenger=actor,
                action=action,
                rationale=rationale,
            ))
            self._commit(record)
            logger.info("Decision %s %s by %s", decision_id, status, actor)
            return record.model_copy(deep=True)

    def escalate(self, decision_id: str) -> DecisionRecord:
        """Hand an unresolved decision off for escalation. Terminal."""
        with self._lock:
            record = self._require(decision_id).model_copy(deep=True)
            if record.status in RESOLVED_STATUSES:
                raise AlreadyResolvedError(
                    f"Decision {decision_id} is already {record.status}, cannot escalate"
                )
            record.status = DecisionStatus.ESCALATED
            self._commit(record)
            logger.info(
                "Decision %s escalated after %d challenge rounds",
                decision_id, record.challenge_rounds,
            )
            return record.model_copy(deep=True)

    def supersede(self, old_id: str, new_id: str) -> DecisionRecord:
        """Mark ``old_id`` superseded by ``new_id``.

        ``new_id`` must have declared ``supersedes=old_id`` when proposed.
        """
        with self._lock:
            old = self._require(old_id).model_copy(deep=True)
            new = self._require(new_id)
            if new.supersedes != old_id:
                raise GovernanceValidationError(
                    f"Decision {new_id} does not declare supersedes={old_id}"
                )
            if old.status == DecisionStatus.SUPERSEDED:
                raise AlreadyResolvedError(
                    f"Decision {old_id} is already superseded by {old.superseded_by}"
                )
            old.status = DecisionStatus.SUPERSEDED
            old.superseded_by = new_id
            self._commit(old)
            logger.info("Decision %s superseded by %s", old_id, new_id)
            return old.model_copy(deep=True)

    # -- Reads --

    def get(self, decision_id: str) -> DecisionRecord | None:
        record = self._decisions.get(decision_id)
        return record.model_copy(deep=True) if record else None

    def all(self) -> list[DecisionRecord]:
        return [r.model_copy(deep=True) for r in self._decisions.values()]

    def count(self) -> int:
        return len(self._decisions)

    @property
    def path(self) -> Path:
        """Path to the persisted ledger file."""
        return self._path

    def query(self, filters: DecisionQuery | None = None) -> list[DecisionRecord]:
        """Return decisions matching every supplied filter, in id order."""
        filters = filters or DecisionQuery()
        after = ensure_utc(filters.after) if filters.after else None
        before = ensure_utc(filters.before) if filters.before else None

        results: list[DecisionRecord] = []
        for d in list(self._decisions.values()):
            if filters.author is not None and d.author != filters.author:
                continue
            if filters.type is not None and d.type != filters.type:
                continue
            if filters.status is not None and d.status != filters.status:
                continue
            if filters.project is not None and d.project != filters.project:
                continue
            if filters.phase is not None and d.phase != filters.phase:
                continue
            if filters.challenged is not None and (d.challenge_rounds > 0) != filters.challenged:
                continue
            if filters.depends_on is not None and filters.depends_on not in d.dependencies:
                continue
            if filters.supersedes_id is not None and d.supersedes != filters.supersedes_id:
                continue
            if after and d.timestamp < after:
                continue
            if before and d.timestamp > before:
                continue
            results.append(d.model_copy(deep=True))
        return results

    # -- Lineage --

    def chain(self, decision_id: str) -> list[DecisionRecord]:
        """Supersession chain from the root decision down to ``decision_id``."""
        current: DecisionRecord | None = self._require(decision_id)
        chain: list[DecisionRecord] = []
        seen: set[str] = set()
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current.model_copy(deep=True))
            current = self._decisions.get(current.supersedes) if current.supersedes else None
        chain.reverse()
        return chain

    def forward_chain(self, decision_id: str) -> list[DecisionRecord]:
        """All decisions that supersede ``decision_id``, directly or transitively.

        Breadth-first; supersession may branch when several proposals declare
        the same predecessor.
        """
        self._require(decision_id)
        result: list[DecisionRecord] = []
        queue = deque([decision_id])
        visited = {decision_id}
        while queue:
            current = queue.popleft()
            for successor in self._superseded_by.get(current, []):
                if successor in visited:
                    continue
                visited.add(successor)
                result.append(self._decisions[successor].model_copy(deep=True))
                queue.append(successor)
        return result

    def dependency_graph(self, decision_id: str, transitive: bool = False) -> list[DecisionRecord]:
        """Declared dependencies of ``decision_id``.

        One hop by default. With ``transitive=True`` the whole dependency DAG
        is walked depth-first and returned in post-order (deepest first).
        """
        root = self._require(decision_id)
        if not transitive:
            return [self._decisions[dep].model_copy(deep=True) for dep in root.dependencies]

        result: list[DecisionRecord] = []
        visited: set[str] = {decision_id}

        def walk(record: DecisionRecord) -> None:
            for dep_id in record.dependencies:
                if dep_id in visited:
                    continue
                visited.add(dep_id)
                dep = self._decisions[dep_id]
                walk(dep)
                result.append(dep.model_copy(deep=True))

        walk(root)
        return result

    def dependents(self, decision_id: str) -> list[DecisionRecord]:
        """Decisions that declared ``decision_id`` as a dependency."""
        self._require(decision_id)
        return [
            self._decisions[dep_id].model_copy(deep=True)
            for dep_id in self._dependents.get(decision_id, [])
        ]

    # -- Export --

    def export_json(self, filters: DecisionQuery | None = None) -> str:
        """Pretty-printed JSON array of the matching decisions."""
        return json.dumps(
            [d.model_dump(mode="json") for d in self.query(filters)], indent=2
        )

    def export_markdown(self, filters: DecisionQuery | None = None) -> str:
        """Markdown audit trail including each decision's challenge history."""
        lines = ["# Decision Audit Trail", ""]
        for d in self.query(filters):
            lines.append(f"## {d.id}: {d.summary}")
            lines.append("")
            lines.append(f"- **Author:** {d.author}")
            lines.append(f"- **Type:** {d.type}")
            lines.append(f"- **Status:** {d.status}")
            lines.append(f"- **Project:** {d.project}")
            lines.append(f"- **Phase:** {d.phase}")
            lines.append(f"- **Timestamp:** {d.timestamp.isoformat()}")
            if d.supersedes:
                lines.append(f"- **Supersedes:** {d.supersedes}")
            if d.superseded_by:
                lines.append(f"- **Superseded by:** {d.superseded_by}")
            if d.dependencies:
                lines.append(f"- **Dependencies:** {', '.join(d.dependencies)}")
            lines.append("")
            lines.append(f"**Rationale:** {d.rationale}")
            lines.append("")
            if d.evidence:
                lines.append("**Evidence:**")
                lines.extend(f"- {item}" for item in d.evidence)
                lines.append("")
            if d.challenge_history:
                lines.append("**Challenge History:**")
                lines.append("")
                for entry in d.challenge_history:
                    lines.append(f"### Round {entry.round}: {entry.action} by {entry.challenger}")
                    lines.append("")
                    lines.append(f"- {entry.rationale}")
                    if entry.counter_proposal:
                        lines.append(f"- Counter-proposal: {entry.counter_proposal}")
                    lines.append(f"- _{entry.timestamp.isoformat()}_")
                    lines.append("")
            lines.append("---")
            lines.append("")
        return "\n".join(lines)
