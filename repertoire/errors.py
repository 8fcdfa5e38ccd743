"""Error taxonomy for repertoire operations.

Every core operation is atomic: when one of these is raised, nothing
from that call has been written.
"""

from __future__ import annotations


class RepertoireError(Exception):
    """Base class for all repertoire domain errors."""


class InvalidMoveSequence(RepertoireError, ValueError):
    """A move in a submitted line is illegal, ambiguous or unparseable."""

    def __init__(self, message: str, ply: int | None = None, move: str | None = None):
        super().__init__(message)
        self.ply = ply
        self.move = move


class RepertoireNotFound(RepertoireError):
    """The (user, color) repertoire has not been created yet."""


class EntryConflict(RepertoireError):
    """A position already commits to a different move in this repertoire."""


class EntryNotFound(RepertoireError):
    """No entry with the requested id exists."""


class NotOwner(RepertoireError):
    """The entry belongs to another user."""


class InvalidResponse(RepertoireError, ValueError):
    """A review response outside forgot/partial/effort/easy."""


class StaleEntry(RepertoireError):
    """The entry changed between read and write (lost-update guard)."""
