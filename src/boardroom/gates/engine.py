"""Phase gate engine.

Structural enforcement of phase transitions: a project may only move from
phase N to N+1, only through the gate configured for that transition, and
only when the latest verdict for that gate is PASS or an unexpired
CONDITIONAL. A FAIL verdict is never overridden; recovery is a new verdict.
Gates declared ``verdict_type: advisory`` still need a verdict, but their
FAIL and expired CONDITIONAL outcomes are reported as warnings.

Phase state for each project lives in ``<state_dir>/<project>/phase.json``
and is written atomically after every mutation.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from boardroom.core.board import BoardConfig, GateDefinition
from boardroom.core.errors import GovernanceValidationError, NotAuthorizedError, NotFoundError
from boardroom.core.persistence import atomic_write_json, read_json
from boardroom.core.types import PhaseStatus, VerdictType, ensure_utc, utc_now
from boardroom.gates.models import (
    AdvanceCheck,
    AdvanceResult,
    GateHistoryQuery,
    GateVerdict,
    PhaseState,
)

logger = logging.getLogger(__name__)

_PROJECT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_STATUS_FOR_VERDICT = {
    VerdictType.PASS: PhaseStatus.GATED_PASS,
    VerdictType.FAIL: PhaseStatus.GATED_FAIL,
    VerdictType.CONDITIONAL: PhaseStatus.GATED_CONDITIONAL,
}


def default_phase_name(phase: int) -> str:
    return f"phase-{phase}"


class PhaseGateEngine:
    """Per-project phase state machine driven by recorded gate verdicts.

    Args:
        board: Validated board config supplying the gate definitions.
        state_dir: Root directory for per-project phase files.
        clock: Source of the current time; CONDITIONAL expiry is evaluated
            against it whenever advancement is checked.
    """

    def __init__(
        self,
        board: BoardConfig,
        state_dir: str | Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._gates: dict[str, GateDefinition] = dict(board.gates)
        # A gate's issuers are its required roles plus every role holding it.
        self._issuers: dict[str, set[str]] = {
            gate_id: set(gate.required) for gate_id, gate in self._gates.items()
        }
        for role, role_config in board.roles.items():
            for gate_id in role_config.gates:
                self._issuers[gate_id].add(role)
        self._state_dir = Path(state_dir)
        self._clock = clock
        self._lock = threading.RLock()
        self._states: dict[str, PhaseState] = {}

    # -- Persistence --

    def project_dir(self, project: str) -> Path:
        """State directory for ``project``; rejects names unsafe as a path segment."""
        if not _PROJECT_NAME.match(project):
            raise GovernanceValidationError(f"Invalid project name '{project}'")
        return self._state_dir / project

    def _phase_path(self, project: str) -> Path:
        return self.project_dir(project) / "phase.json"

    def _load(self, project: str) -> PhaseState | None:
        if project in self._states:
            return self._states[project]
        raw = read_json(self._phase_path(project))
        if raw is None:
            return None
        state = PhaseState.model_validate(raw)
        self._states[project] = state
        return state

    def _commit(self, state: PhaseState) -> None:
        atomic_write_json(self._phase_path(state.project), state.model_dump(mode="json"))
        self._states[state.project] = state

    # -- Gates --

    def get_gate(self, gate_id: str) -> GateDefinition | None:
        return self._gates.get(gate_id)

    @property
    def gates(self) -> dict[str, GateDefinition]:
        return dict(self._gates)

    def issuers_for(self, gate_id: str) -> list[str]:
        """Roles allowed to issue verdicts for ``gate_id``; empty means any role."""
        return sorted(self._issuers.get(gate_id, ()))

    def get_phase_state(self, project: str) -> PhaseState | None:
        state = self._load(project)
        return state.model_copy(deep=True) if state else None

    # -- Verdicts --

    def record_verdict(self, verdict: GateVerdict) -> PhaseState:
        """Append a verdict to the project's history and update its status.

        Phase state is created on the project's first verdict, starting at
        the verdict's phase.

        Raises:
            NotFoundError: If the gate is not configured.
            NotAuthorizedError: If the gate has authorized issuers (its
                ``required`` roles plus roles listing it under ``gates``) and
                the issuer is not one of them.
            GovernanceValidationError: If the verdict's phase does not match
                the gate or the project's current phase.
        """
        gate = self._gates.get(verdict.gate_id)
        if gate is None:
            raise NotFoundError(f"Gate '{verdict.gate_id}' is not configured")
        issuers = self.issuers_for(verdict.gate_id)
        if issuers and verdict.issued_by not in issuers:
            raise NotAuthorizedError(
                f"Role '{verdict.issued_by}' may not issue verdicts for gate "
                f"'{verdict.gate_id}' (authorized: {', '.join(issuers)})"
            )
        if verdict.phase != gate.from_phase:
            raise GovernanceValidationError(
                f"Gate '{verdict.gate_id}' guards phase {gate.from_phase}, "
                f"verdict is for phase {verdict.phase}"
            )

        with self._lock:
            existing = self._load(verdict.project)
            now = self._clock()
            if existing is None:
                state = PhaseState(
                    project=verdict.project,
                    current_phase=verdict.phase,
                    phase_name=default_phase_name(verdict.phase),
                    started_at=now,
                    updated_at=now,
                )
            else:
                if existing.current_phase != verdict.phase:
                    raise GovernanceValidationError(
                        f"Project '{verdict.project}' is in phase {existing.current_phase}, "
                        f"verdict is for phase {verdict.phase}"
                    )
                state = existing.model_copy(deep=True)

            state.gate_verdicts.append(verdict.model_copy(deep=True))
            state.status = _STATUS_FOR_VERDICT[verdict.verdict]
            state.updated_at = now
            self._commit(state)

        logger.info(
            "Gate %s verdict %s for %s phase %d issued by %s",
            verdict.gate_id, verdict.verdict, verdict.project, verdict.phase, verdict.issued_by,
        )
        return state.model_copy(deep=True)

    # -- Advancement --

    def can_advance(
        self,
        project: str,
        from_phase: int,
        to_phase: int,
        gate_id: str,
    ) -> AdvanceCheck:
        """Check whether ``gate_id`` currently permits ``from_phase -> to_phase``.

        The transition must be a single step guarded by ``gate_id``, and the
        gate must have a verdict at ``from_phase``. Only the most recent one
        counts. A FAIL or an expired CONDITIONAL blocks a structural gate;
        on an advisory gate it is reported under ``warnings`` instead.
        """
        if to_phase != from_phase + 1:
            return AdvanceCheck(
                allowed=False,
                blockers=[f"Phase skipping is not allowed: {from_phase} -> {to_phase}"],
            )
        gate = self._gates.get(gate_id)
        if gate is None:
            return AdvanceCheck(allowed=False, blockers=[f"Gate '{gate_id}' is not configured"])
        if gate.from_phase != from_phase or gate.to_phase != to_phase:
            return AdvanceCheck(
                allowed=False,
                blockers=[
                    f"Gate '{gate_id}' guards {gate.from_phase} -> {gate.to_phase}, "
                    f"not {from_phase} -> {to_phase}"
                ],
            )

        state = self._load(project)
        if state is None:
            return AdvanceCheck(
                allowed=False,
                blockers=[f"No phase state recorded for project '{project}'"],
            )

        blockers: list[str] = []
        if state.current_phase != from_phase:
            blockers.append(
                f"Project '{project}' is in phase {state.current_phase}, not {from_phase}"
            )

        latest = next(
            (
                v for v in reversed(state.gate_verdicts)
                if v.gate_id == gate_id and v.phase == from_phase
            ),
            None,
        )
        if latest is None:
            blockers.append(f"Missing verdict for gate '{gate_id}' at phase {from_phase}")
            return AdvanceCheck(allowed=False, blockers=blockers)

        findings: list[str] = []
        conditional = False
        if latest.verdict == VerdictType.FAIL:
            details = "; ".join(latest.blocking_issues) or "no details"
            findings.append(f"{latest.issued_by} issued FAIL for gate '{gate_id}': {details}")
        elif latest.verdict == VerdictType.CONDITIONAL:
            if latest.expires_at is not None and ensure_utc(latest.expires_at) <= self._clock():
                findings.append(
                    f"CONDITIONAL verdict for gate '{gate_id}' expired at "
                    f"{latest.expires_at.isoformat()}"
                )
            else:
                conditional = True

        warnings: list[str] = []
        if gate.verdict_type == "advisory":
            warnings = findings
        else:
            blockers.extend(findings)

        return AdvanceCheck(
            allowed=not blockers,
            blockers=blockers,
            warnings=warnings,
            conditional=conditional and not blockers,
            conditions=list(latest.conditions) if conditional else [],
            verdict=latest,
        )

    def advance_phase(
        self,
        project: str,
        gate_id: str,
        from_phase: int,
        to_phase: int,
        phase_name: str,
    ) -> AdvanceResult:
        """Move ``project`` from ``from_phase`` to ``to_phase`` through ``gate_id``.

        Refuses anything :meth:`can_advance` blocks, phase skipping and a
        gate guarding another transition included. Verdict history is
        retained across the transition.
        """
        with self._lock:
            check = self.can_advance(project, from_phase, to_phase, gate_id)
            if not check.allowed:
                logger.warning(
                    "Phase advance %s %d -> %d blocked: %s",
                    project, from_phase, to_phase, "; ".join(check.blockers),
                )
                return AdvanceResult(advanced=False, blockers=check.blockers, warnings=check.warnings)
            if check.warnings:
                logger.warning(
                    "Phase advance %s %d -> %d past advisory gate %s: %s",
                    project, from_phase, to_phase, gate_id, "; ".join(check.warnings),
                )

            state = self._load(project).model_copy(deep=True)
            state.current_phase = to_phase
            state.phase_name = phase_name
            state.status = PhaseStatus.IN_PROGRESS
            state.updated_at = self._clock()
            self._commit(state)

        logger.info("Project %s advanced to phase %d (%s)", project, to_phase, phase_name)
        return AdvanceResult(
            advanced=True,
            current_phase=to_phase,
            phase_name=phase_name,
            conditional=check.conditional,
            conditions=check.conditions,
            warnings=check.warnings,
        )

    # -- History --

    def list_projects(self) -> list[str]:
        """Projects with recorded phase state, on disk or in memory."""
        projects = set(self._states)
        if self._state_dir.exists():
            projects.update(
                p.parent.name for p in self._state_dir.glob("*/phase.json")
            )
        return sorted(projects)

    def query_history(self, query: GateHistoryQuery | None = None) -> list[GateVerdict]:
        """Verdicts across all projects matching every filter, newest first."""
        query = query or GateHistoryQuery()
        after = ensure_utc(query.after) if query.after else None
        before = ensure_utc(query.before) if query.before else None

        projects = [query.project] if query.project is not None else self.list_projects()
        results: list[GateVerdict] = []
        for project in projects:
            state = self._load(project)
            if state is None:
                continue
            for v in state.gate_verdicts:
                if query.phase is not None and v.phase != query.phase:
                    continue
                if query.verdict is not None and v.verdict != query.verdict:
                    continue
                if query.issued_by is not None and v.issued_by != query.issued_by:
                    continue
                if query.gate_id is not None and v.gate_id != query.gate_id:
                    continue
                if after and v.timestamp < after:
                    continue
                if before and v.timestamp > before:
                    continue
                results.append(v.model_copy(deep=True))

        results.sort(key=lambda v: v.timestamp, reverse=True)
        return results
