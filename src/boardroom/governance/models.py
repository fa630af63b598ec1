"""Data models for access control and its audit log."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from boardroom.core.types import ViolationType, utc_now


class AccessCheckResult(BaseModel):
    allowed: bool
    reason: str
    violation_type: ViolationType | None = None


class AuditLogEntry(BaseModel):
    """One access check, allowed or denied. Every check produces exactly one."""

    timestamp: datetime = Field(default_factory=utc_now)
    agent_role: str
    # Root-relative path that was checked
    target_path: str
    allowed: bool
    violation_type: ViolationType | None = None
    reason: str
    matched_pattern: str | None = None
    agent_scope: list[str] | None = None


class AuditLogQuery(BaseModel):
    """Conjunctive audit log filters; time bounds are inclusive."""

    agent_role: str | None = None
    allowed: bool | None = None
    violation_type: ViolationType | None = None
    after: datetime | None = None
    before: datetime | None = None
    path_contains: str | None = None
    limit: int | None = Field(default=None, gt=0)


class TargetCount(BaseModel):
    path: str
    count: int


class AuditSummary(BaseModel):
    total_attempts: int
    total_denied: int
    total_allowed: int
    denials_by_type: dict[str, int] = Field(default_factory=dict)
    denials_by_agent: dict[str, int] = Field(default_factory=dict)
    top_targeted_assets: list[TargetCount] = Field(default_factory=list)


class ViolationReport(BaseModel):
    """Remediation detail for a denied write.

    This is the shape runtime collaborators translate into their own
    file-access policy; the kernel itself never touches file permissions.
    """

    result: AccessCheckResult
    agent_role: str
    attempted_path: str
    timestamp: datetime = Field(default_factory=utc_now)
    matched_pattern: str | None = None
    allowed_scope: list[str] | None = None
    nearest_allowed: str | None = None


class PathViolation(BaseModel):
    """A path rejected by :meth:`AccessControl.validate_paths`."""

    path: str
    pattern: str | None = None
    violation_type: ViolationType
    reason: str
