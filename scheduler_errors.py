"""Error hierarchy for the session scheduler.

Expected outcomes (a slot conflict, a student who could not be fully placed)
are returned as values and never raised. These exceptions cover records and
settings the scheduler cannot work with at all.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""

    pass


class InvalidRecordError(SchedulerError, ValueError):
    """A student, session or calendar record is malformed.

    Examples: an unparseable time string, a non-positive session length.
    Raised inside the per-student loop, where it is caught and reported
    against that student only.
    """

    pass


class ConfigurationError(SchedulerError):
    """Scheduling rules are unusable (empty slot grid, zero capacity, ...)."""

    pass
