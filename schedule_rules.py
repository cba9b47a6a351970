"""
Time arithmetic, the candidate slot grid and the placement constraint checks
shared by automatic scheduling and manual session moves.

All times cross this module as "HH:MM" or "HH:MM:SS" strings and are compared
as integer minutes since midnight. Intervals are half-open: a session ending
at 09:30 does not overlap one starting at 09:30.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from scheduler_config import SchedulerConfig
from scheduler_errors import ConfigurationError, InvalidRecordError

DAY_NAMES = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri"}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


@dataclass(frozen=True)
class StudentSpec:
    id: str
    grade_level: str
    teacher_name: str
    sessions_per_week: int
    minutes_per_session: int
    initials: str = ""

    @property
    def label(self) -> str:
        return self.initials or self.id


@dataclass(frozen=True)
class BellPeriodSpec:
    grades: Tuple[str, ...]
    day_of_week: int
    start_time: str
    end_time: str
    period_name: str = ""


@dataclass(frozen=True)
class ActivitySpec:
    teacher_name: str
    day_of_week: int
    start_time: str
    end_time: str
    activity_name: str = ""


@dataclass(frozen=True)
class SessionSpec:
    student_id: str
    day_of_week: int
    start_time: str
    end_time: str
    provider_id: Optional[str] = None
    service_type: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class SlotCheck:
    valid: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ConstraintPolicy:
    # Automatic scheduling spreads a student over the week; manual moves may stack a day.
    one_session_per_day: bool = True


AUTOMATIC_POLICY = ConstraintPolicy(one_session_per_day=True)
MANUAL_POLICY = ConstraintPolicy(one_session_per_day=False)

VALID = SlotCheck(valid=True)


def parse_time(value: str) -> int:
    """Minutes since midnight for an "HH:MM" or "HH:MM:SS" string (seconds are dropped)."""
    if not isinstance(value, str):
        raise InvalidRecordError(f"time must be a string, got {type(value).__name__}")
    m = _TIME_RE.match(value.strip())
    if m is None:
        raise InvalidRecordError(f"invalid time {value!r}: expected HH:MM or HH:MM:SS")
    hours, minutes, seconds = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidRecordError(f"invalid time {value!r}: out of range")
    return hours * 60 + minutes


def format_time(minutes: int, seconds: bool = False) -> str:
    text = f"{minutes // 60:02d}:{minutes % 60:02d}"
    return f"{text}:00" if seconds else text


def add_minutes(time: str, minutes: int) -> str:
    """End time for a session starting at `time`, in the HH:MM:SS form the sessions table stores."""
    return format_time(parse_time(time) + minutes, seconds=True)


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    return not (parse_time(end1) <= parse_time(start2) or parse_time(start1) >= parse_time(end2))


@dataclass(frozen=True)
class SchedulingRules:
    """The school-day grid and occupancy limits, in minutes since midnight."""

    day_start: int = 8 * 60
    last_slot_start: int = 14 * 60 + 30
    slot_interval_minutes: int = 15
    day_end_cutoff: int = 15 * 60
    slot_capacity: int = 4
    days: Tuple[int, ...] = (1, 2, 3, 4, 5)

    def __post_init__(self) -> None:
        if self.slot_interval_minutes <= 0:
            raise ConfigurationError("slot_interval_minutes must be positive")
        if self.last_slot_start < self.day_start:
            raise ConfigurationError("last_slot_start cannot be before day_start")
        if self.slot_capacity <= 0:
            raise ConfigurationError("slot_capacity must be positive")
        if not self.days:
            raise ConfigurationError("days must be non-empty")

    @classmethod
    def from_config(cls, cfg: SchedulerConfig) -> "SchedulingRules":
        try:
            return cls(
                day_start=parse_time(cfg.day_start),
                last_slot_start=parse_time(cfg.last_slot_start),
                slot_interval_minutes=cfg.slot_interval_minutes,
                day_end_cutoff=parse_time(cfg.day_end_cutoff),
                slot_capacity=cfg.slot_capacity,
            )
        except InvalidRecordError as e:
            raise ConfigurationError(f"invalid scheduler time setting: {e}") from e


DEFAULT_RULES = SchedulingRules()


def generate_time_slots(rules: SchedulingRules = DEFAULT_RULES) -> Tuple[str, ...]:
    """Candidate start times for one school day, identical for every weekday.

    The end-of-day cutoff is not applied here; a late start with a long session
    is rejected by validate_slot.
    """
    return tuple(
        format_time(m)
        for m in range(rules.day_start, rules.last_slot_start + 1, rules.slot_interval_minutes)
    )


def count_sessions_by_day(sessions: Iterable[SessionSpec]) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for s in sessions:
        counts[s.day_of_week] = counts.get(s.day_of_week, 0) + 1
    return counts


def validate_slot(
    student: StudentSpec,
    day: int,
    start_time: str,
    end_time: str,
    existing_sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    in_progress: Sequence[SessionSpec] = (),
    *,
    rules: SchedulingRules = DEFAULT_RULES,
    policy: ConstraintPolicy = AUTOMATIC_POLICY,
) -> SlotCheck:
    """Decide whether `student` may take [start_time, end_time) on `day`.

    Checks run in a fixed order and the first failure is reported:
    school-day cutoff, bell schedule, teacher activity, same-student overlap,
    one-session-per-day (automatic policy only), slot capacity.
    `in_progress` holds placements already made for this student in the
    current pass that are not yet part of `existing_sessions`.
    """
    if parse_time(end_time) > rules.day_end_cutoff:
        return SlotCheck(False, "Extends beyond school hours")

    grade = student.grade_level.strip()
    for bell in bell_schedules:
        if (
            bell.day_of_week == day
            and grade in bell.grades
            and times_overlap(start_time, end_time, bell.start_time, bell.end_time)
        ):
            return SlotCheck(False, f"Conflicts with {bell.period_name}")

    for activity in teacher_activities:
        if (
            activity.teacher_name == student.teacher_name
            and activity.day_of_week == day
            and times_overlap(start_time, end_time, activity.start_time, activity.end_time)
        ):
            return SlotCheck(False, f"Teacher has {activity.activity_name}")

    own_today = [s for s in existing_sessions if s.student_id == student.id and s.day_of_week == day]
    if any(times_overlap(start_time, end_time, s.start_time, s.end_time) for s in own_today):
        return SlotCheck(False, "Student already has a session at this time")

    if policy.one_session_per_day:
        if own_today or any(s.day_of_week == day for s in in_progress):
            return SlotCheck(False, "Student already scheduled today (one session per day rule)")

    occupancy = sum(
        1
        for s in existing_sessions
        if s.day_of_week == day
        and s.student_id != student.id
        and times_overlap(start_time, end_time, s.start_time, s.end_time)
    )
    if occupancy >= rules.slot_capacity:
        return SlotCheck(False, "Time slot full")

    return VALID
