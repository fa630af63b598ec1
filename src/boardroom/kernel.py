"""Wiring of the four governance components for one project.

Each project gets its own ledger, counter-proposal store and phase state
under ``<state.directory>/<project>/``; the board definition and the access
control root are shared.
"""

from __future__ import annotations

from pathlib import Path

from boardroom.challenges.engine import ChallengeEngine
from boardroom.core.board import BoardConfig, load_board_config
from boardroom.core.config import Settings
from boardroom.core.errors import NotFoundError
from boardroom.decisions.ledger import DecisionLedger
from boardroom.gates.engine import PhaseGateEngine
from boardroom.governance.access import AccessControl
from boardroom.governance.archive import AuditArchive


class GovernanceKernel:
    """Decision ledger, challenge engine, gate engine and access control."""

    def __init__(
        self,
        board: BoardConfig,
        project: str,
        state_dir: str | Path,
        base_dir: str | Path,
        archive: AuditArchive | None = None,
    ) -> None:
        self.board = board
        self.project = project
        root = Path(state_dir)
        self.gates = PhaseGateEngine(board, root)
        project_dir = self.gates.project_dir(project)
        self.ledger = DecisionLedger(project_dir)
        self.challenges = ChallengeEngine(board, state_dir=project_dir)
        self.access = AccessControl.from_board(board, base_dir)
        self.archive = archive

    @classmethod
    def from_settings(cls, settings: Settings, project: str) -> GovernanceKernel:
        board = load_board_config(settings.board_config_path)
        return cls(
            board=board,
            project=project,
            state_dir=settings.state.directory,
            base_dir=settings.base_dir,
            archive=AuditArchive(settings.audit),
        )

    def can_execute(self, decision_id: str) -> bool:
        """Look up a decision and apply the challenge engine's execution check."""
        decision = self.ledger.get(decision_id)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        return self.challenges.can_execute(decision)

    def flush_audit_log(self) -> int:
        """Archive and clear the access audit log. No-op without an archive."""
        if self.archive is None:
            return 0
        return self.access.flush_to(self.archive)
