"""
Scheduling error taxonomy.

Every failure the scheduling core raises is a SchedulingError subclass:

- NotFoundError: referenced learner or item does not exist
- ConflictError: submission for a non-head item, duplicate ids, stale state
- InvalidStateError: malformed inputs or a broken chain invariant
- PredictorUnavailableError: learned predictor failed or timed out
- PersistenceError: the aggregate store refused or failed a save

PredictorUnavailableError is recovered inside the orchestrator; all others
propagate to the caller unchanged.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for scheduling core failures."""
    pass


class NotFoundError(SchedulingError):
    """Raised when a learner or item cannot be located."""
    pass


class ConflictError(SchedulingError):
    """Raised when an operation conflicts with the current sequence state."""
    pass


class InvalidStateError(SchedulingError):
    """Raised when inputs or stored state violate an invariant."""
    pass


class PredictorUnavailableError(SchedulingError):
    """Raised when the learned predictor cannot answer."""
    pass


class PersistenceError(SchedulingError):
    """Raised when the aggregate store fails to save."""
    pass
