"""Errors raised by the intake core.

Everything except ``AlreadyLocked`` is scoped to a single candidate file and
is caught by the dispatchers so one bad file never blocks the others.
"""
from __future__ import annotations


class IntakeError(Exception):
    """Base class for intake failures."""


class AlreadyLocked(IntakeError):
    """Another intake session owns the lock marker."""

    def __init__(self, lock_path: str) -> None:
        super().__init__(f"Lockfile present: {lock_path}")
        self.lock_path = lock_path


class StabilityProbeFailed(IntakeError):
    """The candidate vanished or the open-handle probe could not run."""


class RelocationFailed(IntakeError):
    """The candidate could not be moved into the staging directory."""


class PublishFailed(IntakeError):
    """The broker was unreachable or did not confirm the job message."""


class SchedulingFailed(IntakeError):
    """A deferred re-run could not be handed to the system scheduler."""


class IntakeCancelled(IntakeError):
    """The session stopped while the candidate was still being written."""
