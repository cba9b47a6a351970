from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from schedule_rules import ActivitySpec, BellPeriodSpec, SessionSpec, StudentSpec, parse_time

WEEKDAYS: Tuple[int, ...] = (1, 2, 3, 4, 5)


def _clean_time(v: str) -> str:
    v = (v or "").strip()
    # parse_time raises InvalidRecordError, a ValueError, which pydantic reports as a field error
    parse_time(v)
    return v


def _check_weekday(v: int) -> int:
    if v not in WEEKDAYS:
        raise ValueError("must be a weekday number 1 (Mon) .. 5 (Fri)")
    return v


def _check_interval(start: str, end: str) -> None:
    if parse_time(start) >= parse_time(end):
        raise ValueError(f"start_time {start} must be before end_time {end}")


class Student(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    initials: str = ""
    grade_level: str
    teacher_name: str = ""
    sessions_per_week: int
    minutes_per_session: int

    @field_validator("id", "grade_level")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("initials", "teacher_name")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("sessions_per_week", "minutes_per_session", mode="before")
    @classmethod
    def _not_bool(cls, v: Any) -> Any:
        # JSON true would otherwise coerce to 1
        if isinstance(v, bool):
            raise ValueError("must be a positive integer, not a boolean")
        return v

    @field_validator("sessions_per_week", "minutes_per_session")
    @classmethod
    def _positive(cls, v: int) -> int:
        if not isinstance(v, int) or v <= 0:
            raise ValueError("must be a positive integer")
        return v

    def to_spec(self) -> StudentSpec:
        return StudentSpec(
            id=self.id,
            initials=self.initials,
            grade_level=self.grade_level,
            teacher_name=self.teacher_name,
            sessions_per_week=self.sessions_per_week,
            minutes_per_session=self.minutes_per_session,
        )


class BellSchedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Stored upstream as one comma-joined string ("K, 1, 2"); a list is accepted too.
    grade_level: List[str]
    day_of_week: int
    start_time: str
    end_time: str
    period_name: str = ""

    @field_validator("grade_level", mode="before")
    @classmethod
    def _split_grades(cls, v: Union[str, List[str], None]) -> List[str]:
        if v is None:
            raise ValueError("must list at least one grade")
        parts = v.split(",") if isinstance(v, str) else v
        if not isinstance(parts, list):
            raise ValueError("must be a comma-separated string or an array of strings")
        out: List[str] = []
        for g in parts:
            if not isinstance(g, str):
                raise ValueError("grades must be strings")
            g = g.strip()
            if g and g not in out:
                out.append(g)
        if not out:
            raise ValueError("must list at least one grade")
        return out

    @field_validator("day_of_week")
    @classmethod
    def _weekday(cls, v: int) -> int:
        return _check_weekday(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _time(cls, v: str) -> str:
        return _clean_time(v)

    @model_validator(mode="after")
    def _ordered(self) -> "BellSchedule":
        _check_interval(self.start_time, self.end_time)
        return self

    def to_spec(self) -> BellPeriodSpec:
        return BellPeriodSpec(
            grades=tuple(self.grade_level),
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            period_name=self.period_name,
        )


class SpecialActivity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    teacher_name: str
    day_of_week: int
    start_time: str
    end_time: str
    activity_name: str = ""

    @field_validator("teacher_name")
    @classmethod
    def _teacher_non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("day_of_week")
    @classmethod
    def _weekday(cls, v: int) -> int:
        return _check_weekday(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _time(cls, v: str) -> str:
        return _clean_time(v)

    @model_validator(mode="after")
    def _ordered(self) -> "SpecialActivity":
        _check_interval(self.start_time, self.end_time)
        return self

    def to_spec(self) -> ActivitySpec:
        return ActivitySpec(
            teacher_name=self.teacher_name,
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            activity_name=self.activity_name,
        )


class ScheduleSession(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    student_id: str
    provider_id: Optional[str] = None
    day_of_week: int
    start_time: str
    end_time: str
    service_type: Optional[str] = None

    @field_validator("student_id")
    @classmethod
    def _student_non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("day_of_week")
    @classmethod
    def _weekday(cls, v: int) -> int:
        return _check_weekday(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _time(cls, v: str) -> str:
        return _clean_time(v)

    @model_validator(mode="after")
    def _ordered(self) -> "ScheduleSession":
        _check_interval(self.start_time, self.end_time)
        return self

    def to_spec(self) -> SessionSpec:
        return SessionSpec(
            id=self.id,
            student_id=self.student_id,
            provider_id=self.provider_id,
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            service_type=self.service_type,
        )


def _unique_student_ids(students: List[Student]) -> None:
    ids = [s.id for s in students]
    if len(set(ids)) != len(ids):
        raise ValueError("student ids must be unique")


class SchedulingInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider_id: str
    service_type: str
    students: List[Student]
    existing_sessions: List[ScheduleSession] = Field(default_factory=list)
    bell_schedules: List[BellSchedule] = Field(default_factory=list)
    special_activities: List[SpecialActivity] = Field(default_factory=list)

    @field_validator("provider_id", "service_type")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @model_validator(mode="after")
    def _unique_students(self) -> "SchedulingInput":
        _unique_student_ids(self.students)
        return self

    @classmethod
    def load_file(cls, path: Union[str, Path]) -> "SchedulingInput":
        p = Path(path)
        data = json.loads(p.read_text(encoding="utf-8"))
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            # Re-raise with a cleaner message for CLI usage
            raise ValueError(str(e)) from e

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def save_file(self, path: Union[str, Path]) -> None:
        p = Path(path)
        p.write_text(json.dumps(self.to_json_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


class ManualMoveRequest(BaseModel):
    """A session being dragged, plus everything needed to grey out blocked drop targets."""

    model_config = ConfigDict(extra="forbid")

    session: ScheduleSession
    student: Student
    sessions: List[ScheduleSession] = Field(default_factory=list)
    bell_schedules: List[BellSchedule] = Field(default_factory=list)
    special_activities: List[SpecialActivity] = Field(default_factory=list)

    @model_validator(mode="after")
    def _session_belongs_to_student(self) -> "ManualMoveRequest":
        if self.session.student_id != self.student.id:
            raise ValueError(
                f"session belongs to student '{self.session.student_id}', not '{self.student.id}'"
            )
        return self


class UnscheduledCountRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    students: List[Student]
    sessions: List[ScheduleSession] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_students(self) -> "UnscheduledCountRequest":
        _unique_student_ids(self.students)
        return self
