"""
Error hierarchy for the upcoming-class scheduler.

Per-match errors (IssuanceFailed, DeliveryFailed, UnresolvedReference) are
caught by the scheduler and recorded against the match. SnapshotUnavailable
aborts only the current tick.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""

    pass


class SnapshotUnavailable(SchedulerError):
    """Reading schedules, professors or classrooms from the store failed."""

    pass


class IssuanceFailed(SchedulerError):
    """A credential could not be generated or persisted."""

    pass


class DeliveryFailed(SchedulerError):
    """The credential was issued but the message could not be sent."""

    pass


class UnresolvedReference(SchedulerError):
    """A matched schedule points at a professor or classroom that does not exist."""

    pass


class ValidationError(SchedulerError):
    """A record is missing a required field or has a malformed value."""

    pass
