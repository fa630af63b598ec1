"""Governance module for Boardroom.

Provides write access control over governance assets and a hash-chained
archive for its audit log.
"""

from boardroom.governance.access import AccessControl
from boardroom.governance.archive import AuditArchive
from boardroom.governance.models import AccessCheckResult, AuditLogEntry, ViolationReport

__all__ = ["AccessCheckResult", "AccessControl", "AuditArchive", "AuditLogEntry", "ViolationReport"]
