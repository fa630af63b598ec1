"""Access control layer: who may write where.

No governed role may modify the assets that govern it. Protected asset
patterns come from the board and apply to every role; a caller-supplied
scope can only narrow access further, never re-open a protected path.

Every :meth:`AccessControl.check_write_access` call appends exactly one
:class:`AuditLogEntry`. The log is kept in memory until a collaborator
exports and clears it (or flushes it to an :class:`AuditArchive`).
"""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from boardroom.core.board import BoardConfig
from boardroom.core.types import ViolationType, ensure_utc, utc_now
from boardroom.governance.glob import literal_prefix, match_path
from boardroom.governance.models import (
    AccessCheckResult,
    AuditLogEntry,
    AuditLogQuery,
    AuditSummary,
    PathViolation,
    TargetCount,
    ViolationReport,
)

if TYPE_CHECKING:
    from boardroom.governance.archive import AuditArchive

logger = logging.getLogger(__name__)

_TOP_TARGETS = 10


class _Evaluation(NamedTuple):
    result: AccessCheckResult
    relative_path: str
    matched_pattern: str | None
    nearest_allowed: str | None


def filter_audit_entries(
    entries: Iterable[AuditLogEntry],
    query: AuditLogQuery | None = None,
) -> list[AuditLogEntry]:
    """Apply ``query`` to ``entries`` (oldest first), returning newest first."""
    query = query or AuditLogQuery()
    after = ensure_utc(query.after) if query.after else None
    before = ensure_utc(query.before) if query.before else None

    results: list[AuditLogEntry] = []
    for entry in entries:
        if query.agent_role is not None and entry.agent_role != query.agent_role:
            continue
        if query.allowed is not None and entry.allowed != query.allowed:
            continue
        if query.violation_type is not None and entry.violation_type != query.violation_type:
            continue
        if after and entry.timestamp < after:
            continue
        if before and entry.timestamp > before:
            continue
        if query.path_contains and query.path_contains not in entry.target_path:
            continue
        results.append(entry.model_copy(deep=True))

    # Reverse first so equal timestamps keep newest-first order.
    results.reverse()
    results.sort(key=lambda e: e.timestamp, reverse=True)
    if query.limit is not None:
        results = results[: query.limit]
    return results


class AccessControl:
    """Path-based write permission checks with an audit log.

    Args:
        protected_assets: Glob patterns (relative to ``base_dir``) that no
            role may write.
        base_dir: Project root every checked path is resolved against.
        clock: Source of audit timestamps.
    """

    def __init__(
        self,
        protected_assets: Iterable[str],
        base_dir: str | Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._protected = tuple(protected_assets)
        self._base_dir = os.path.normpath(os.path.abspath(os.fspath(base_dir)))
        self._clock = clock
        self._lock = threading.Lock()
        self._audit_log: list[AuditLogEntry] = []

    @classmethod
    def from_board(
        cls,
        board: BoardConfig,
        base_dir: str | Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> AccessControl:
        return cls(board.governance.protected_assets, base_dir, clock=clock)

    @property
    def protected_assets(self) -> tuple[str, ...]:
        return self._protected

    @property
    def base_dir(self) -> str:
        return self._base_dir

    # -- Checks --

    def check_write_access(
        self,
        agent_role: str,
        file_path: str | Path,
        allowed_paths: list[str] | None = None,
    ) -> AccessCheckResult:
        """Decide whether ``agent_role`` may write ``file_path``.

        Denials are, in order: paths escaping the project root
        (``out_of_scope``), protected governance assets
        (``governance_asset``, regardless of ``allowed_paths``), and paths
        outside a non-empty ``allowed_paths`` scope (``out_of_scope``).
        """
        return self._evaluate(agent_role, file_path, allowed_paths).result

    def enforce_file_access(
        self,
        agent_role: str,
        file_path: str | Path,
        allowed_paths: list[str] | None = None,
    ) -> ViolationReport | None:
        """Like :meth:`check_write_access`, but returns a report on denial.

        Returns None when the write is allowed.
        """
        evaluation = self._evaluate(agent_role, file_path, allowed_paths)
        result = evaluation.result
        if result.allowed:
            return None

        report = ViolationReport(
            result=result,
            agent_role=agent_role,
            attempted_path=evaluation.relative_path,
            timestamp=self._clock(),
        )
        if result.violation_type == ViolationType.GOVERNANCE_ASSET:
            report.matched_pattern = evaluation.matched_pattern
        elif result.violation_type == ViolationType.OUT_OF_SCOPE and allowed_paths:
            report.allowed_scope = list(allowed_paths)
            report.nearest_allowed = evaluation.nearest_allowed
        return report

    def is_protected_asset(self, relative_path: str) -> bool:
        return self._find_protected_pattern(relative_path) is not None

    def validate_paths(self, paths: Iterable[str | Path]) -> list[PathViolation]:
        """Batch-check paths against protected assets only.

        Meant for pre-submission validation of a changeset: no scope is
        applied and no audit entries are written.
        """
        violations: list[PathViolation] = []
        for path in paths:
            relative = self._relative(path)
            if relative is None:
                violations.append(PathViolation(
                    path=os.fspath(path),
                    violation_type=ViolationType.OUT_OF_SCOPE,
                    reason="Path resolves outside the project base directory",
                ))
                continue
            pattern = self._find_protected_pattern(relative)
            if pattern is not None:
                violations.append(PathViolation(
                    path=relative,
                    pattern=pattern,
                    violation_type=ViolationType.GOVERNANCE_ASSET,
                    reason=f"Protected governance asset (matched pattern: '{pattern}')",
                ))
        return violations

    def _relative(self, file_path: str | Path) -> str | None:
        """Root-relative POSIX path, or None if it escapes the root."""
        joined = os.path.normpath(os.path.join(self._base_dir, os.fspath(file_path)))
        try:
            relative = os.path.relpath(joined, self._base_dir)
        except ValueError:
            # Different drive on Windows
            return None
        relative = relative.replace(os.sep, "/")
        if relative == ".." or relative.startswith("../"):
            return None
        return relative

    def _escaped_display(self, file_path: str | Path) -> str:
        """Best-effort relative form of a path outside the root, for the audit log."""
        joined = os.path.normpath(os.path.join(self._base_dir, os.fspath(file_path)))
        try:
            return os.path.relpath(joined, self._base_dir).replace(os.sep, "/")
        except ValueError:
            return os.fspath(file_path)

    def _find_protected_pattern(self, relative_path: str) -> str | None:
        return next((p for p in self._protected if match_path(relative_path, p)), None)

    @staticmethod
    def _nearest_allowed(relative_path: str, allowed_paths: list[str]) -> str | None:
        best: str | None = None
        best_length = 0
        for pattern in allowed_paths:
            prefix = literal_prefix(pattern)
            common = len(os.path.commonprefix([relative_path, prefix]))
            if common > best_length:
                best, best_length = pattern, common
        return best

    def _evaluate(
        self,
        agent_role: str,
        file_path: str | Path,
        allowed_paths: list[str] | None,
    ) -> _Evaluation:
        relative = self._relative(file_path)
        matched: str | None = None
        nearest: str | None = None

        if relative is None:
            relative = self._escaped_display(file_path)
            result = AccessCheckResult(
                allowed=False,
                reason=(
                    f"Path '{os.fspath(file_path)}' resolves outside the project base "
                    "directory. Potential path traversal."
                ),
                violation_type=ViolationType.OUT_OF_SCOPE,
            )
        elif (matched := self._find_protected_pattern(relative)) is not None:
            result = AccessCheckResult(
                allowed=False,
                reason=(
                    f"'{relative}' is a protected governance asset (matched pattern: "
                    f"'{matched}'). No governed role may modify governance infrastructure."
                ),
                violation_type=ViolationType.GOVERNANCE_ASSET,
            )
        elif allowed_paths and not any(match_path(relative, p) for p in allowed_paths):
            nearest = self._nearest_allowed(relative, allowed_paths)
            hint = f". Nearest allowed: '{nearest}'" if nearest else ""
            result = AccessCheckResult(
                allowed=False,
                reason=(
                    f"'{relative}' is outside role '{agent_role}' scope. "
                    f"Allowed: [{', '.join(allowed_paths)}]{hint}"
                ),
                violation_type=ViolationType.OUT_OF_SCOPE,
            )
        else:
            result = AccessCheckResult(allowed=True, reason="Access permitted")

        self._record(agent_role, relative, result, allowed_paths, matched)
        if not result.allowed:
            logger.warning(
                "Write denied for %s on %s (%s)", agent_role, relative, result.violation_type,
            )
        return _Evaluation(result, relative, matched, nearest)

    # -- Audit log --

    def _record(
        self,
        agent_role: str,
        relative_path: str,
        result: AccessCheckResult,
        allowed_paths: list[str] | None,
        matched_pattern: str | None,
    ) -> None:
        entry = AuditLogEntry(
            timestamp=self._clock(),
            agent_role=agent_role,
            target_path=relative_path,
            allowed=result.allowed,
            violation_type=result.violation_type,
            reason=result.reason,
            matched_pattern=matched_pattern,
            agent_scope=list(allowed_paths) if allowed_paths else None,
        )
        with self._lock:
            self._audit_log.append(entry)

    def query_audit_log(self, query: AuditLogQuery | None = None) -> list[AuditLogEntry]:
        """Entries matching every filter in ``query``, newest first."""
        with self._lock:
            snapshot = list(self._audit_log)
        return filter_audit_entries(snapshot, query)

    def get_audit_summary(self) -> AuditSummary:
        """Totals, denial breakdowns and the most-targeted protected paths."""
        with self._lock:
            snapshot = list(self._audit_log)

        denied = [e for e in snapshot if not e.allowed]
        by_type = Counter(str(e.violation_type) for e in denied if e.violation_type)
        by_agent = Counter(e.agent_role for e in denied)
        targets = Counter(
            e.target_path for e in denied if e.violation_type == ViolationType.GOVERNANCE_ASSET
        )
        return AuditSummary(
            total_attempts=len(snapshot),
            total_denied=len(denied),
            total_allowed=len(snapshot) - len(denied),
            denials_by_type=dict(by_type),
            denials_by_agent=dict(by_agent),
            top_targeted_assets=[
                TargetCount(path=path, count=count)
                for path, count in targets.most_common(_TOP_TARGETS)
            ],
        )

    def export_audit_log(self) -> list[AuditLogEntry]:
        """Snapshot of the log, oldest first. Changes to it do not affect the log."""
        with self._lock:
            return [e.model_copy(deep=True) for e in self._audit_log]

    def clear_audit_log(self) -> None:
        with self._lock:
            self._audit_log = []

    def flush_to(self, archive: AuditArchive) -> int:
        """Append the current log to ``archive`` and drop what was archived.

        Entries recorded while the archive write is in progress are kept.
        Returns the number of entries archived.
        """
        with self._lock:
            snapshot = list(self._audit_log)
        archive.append(snapshot)
        with self._lock:
            self._audit_log = self._audit_log[len(snapshot):]
        return len(snapshot)
