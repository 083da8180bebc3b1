from __future__ import annotations

from typing import Optional


class DedupeError(Exception):
    """Base class for duplicate detection and merge failures.

    ``step`` names the merge stage that failed (``validate``, ``apply_fields``,
    ``rewire_dependents``, ``union_tags``, ``soft_delete``, ``audit``) when known.
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class ValidationError(DedupeError):
    """Self-merge, already-merged party, or a malformed merge decision."""


class NotFoundError(DedupeError):
    """A primary or duplicate identity does not resolve."""


class ConflictError(DedupeError):
    """A concurrent merge flagged one of the parties while this merge was starting."""


class PersistenceError(DedupeError):
    """Pass-through failure from the storage collaborator."""


class ScanCancelled(DedupeError):
    """The caller aborted an in-flight scan."""
