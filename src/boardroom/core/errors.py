"""Exception hierarchy for the governance kernel.

Each error also derives from the closest built-in so callers that only know
about ``KeyError`` / ``ValueError`` / ``PermissionError`` keep working.
"""

from __future__ import annotations


class BoardroomError(Exception):
    """Base class for all kernel errors."""


class NotFoundError(BoardroomError, KeyError):
    """A referenced decision, counter-proposal, gate or project is absent."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class NotAuthorizedError(BoardroomError, PermissionError):
    """The acting role is outside the configured set for this operation."""


class AlreadyResolvedError(BoardroomError, ValueError):
    """A terminal decision or non-pending counter-proposal was mutated."""


class GovernanceValidationError(BoardroomError, ValueError):
    """Malformed verdict, lineage link or board configuration."""
