import argparse
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from schedule_rules import (
    AUTOMATIC_POLICY,
    DAY_NAMES,
    DEFAULT_RULES,
    MANUAL_POLICY,
    ActivitySpec,
    BellPeriodSpec,
    SchedulingRules,
    SessionSpec,
    SlotCheck,
    StudentSpec,
    add_minutes,
    count_sessions_by_day,
    generate_time_slots,
    parse_time,
    validate_slot,
)
from scheduler_config import get_config
from scheduler_errors import InvalidRecordError
from scheduler_logging import get_logger, setup_logging
from session_schema import ManualMoveRequest, SchedulingInput

log = get_logger(__name__)


@dataclass(frozen=True)
class ProviderContext:
    """Who the new sessions belong to; stamped on every session the scheduler creates."""

    provider_id: str
    service_type: str


@dataclass(frozen=True)
class CandidateSlot:
    day_of_week: int
    start_time: str
    end_time: str


@dataclass(frozen=True)
class StudentScheduleResult:
    sessions: Tuple[SessionSpec, ...]
    success: bool
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SchedulingOutcome:
    scheduled_sessions: Tuple[SessionSpec, ...]
    unscheduled_students: Tuple[StudentSpec, ...]
    errors: Tuple[str, ...]

    @property
    def success(self) -> bool:
        return not self.unscheduled_students and not self.errors

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "scheduled_sessions": [_drop_none(asdict(s)) for s in self.scheduled_sessions],
            "unscheduled_students": [asdict(s) for s in self.unscheduled_students],
            "errors": list(self.errors),
        }


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _student_label(student: Any) -> str:
    return getattr(student, "initials", None) or str(getattr(student, "id", "<unknown student>"))


def _check_student(student: StudentSpec) -> None:
    for name in ("sessions_per_week", "minutes_per_session"):
        v = getattr(student, name)
        if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
            raise InvalidRecordError(f"{name} must be a positive integer, got {v!r}")


def find_available_slots(
    student: StudentSpec,
    existing_sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    *,
    rules: SchedulingRules = DEFAULT_RULES,
) -> List[CandidateSlot]:
    """Greedy search for up to `sessions_per_week` slots, at most one per day.

    Days are tried lightest-first by the number of sessions already in the pool
    (ties keep Mon..Fri order). Each day is walked circularly through the time
    grid starting at len(pool) % len(grid), so successive students do not all
    start probing at 08:00. The first valid start on a day is taken.
    """
    sessions_needed = student.sessions_per_week
    duration = student.minutes_per_session
    time_slots = generate_time_slots(rules)

    load = count_sessions_by_day(existing_sessions)
    days = sorted(rules.days, key=lambda d: load.get(d, 0))
    start_index = len(existing_sessions) % len(time_slots)

    log.debug(
        "finding_slots",
        student=student.label,
        needed=sessions_needed,
        duration=duration,
        day_order=days,
        start_index=start_index,
    )

    found: List[CandidateSlot] = []
    placed: List[SessionSpec] = []
    for day in days:
        if len(found) >= sessions_needed:
            break
        if any(p.day_of_week == day for p in placed):
            log.debug("day_skipped", student=student.label, day=day)
            continue

        for i in range(len(time_slots)):
            start = add_minutes(time_slots[(start_index + i) % len(time_slots)], 0)
            end = add_minutes(start, duration)
            check = validate_slot(
                student,
                day,
                start,
                end,
                existing_sessions,
                bell_schedules,
                teacher_activities,
                placed,
                rules=rules,
                policy=AUTOMATIC_POLICY,
            )
            if check.valid:
                found.append(CandidateSlot(day_of_week=day, start_time=start, end_time=end))
                placed.append(SessionSpec(student_id=student.id, day_of_week=day, start_time=start, end_time=end))
                log.debug("slot_found", student=student.label, day=day, start=start, end=end)
                break
            log.debug("slot_rejected", student=student.label, day=day, start=start, end=end, reason=check.reason)

    return found


def schedule_student(
    student: StudentSpec,
    existing_sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    *,
    provider: ProviderContext,
    rules: SchedulingRules = DEFAULT_RULES,
) -> StudentScheduleResult:
    label = _student_label(student)
    try:
        _check_student(student)
        slots = find_available_slots(student, existing_sessions, bell_schedules, teacher_activities, rules=rules)
    except Exception as e:
        # Reported against this student only; the roster carries on.
        log.exception("student_scheduling_failed", student=label)
        return StudentScheduleResult(sessions=(), success=False, errors=(f"Error scheduling {label}: {e}",))

    sessions_needed = student.sessions_per_week
    errors: List[str] = []
    if len(slots) < sessions_needed:
        log.warning("student_short", student=label, found=len(slots), needed=sessions_needed)
        errors.append(f"Could only find {len(slots)} of {sessions_needed} required slots for {label}")

    sessions = tuple(
        SessionSpec(
            student_id=student.id,
            provider_id=provider.provider_id,
            day_of_week=slot.day_of_week,
            start_time=slot.start_time,
            end_time=slot.end_time,
            service_type=provider.service_type,
        )
        for slot in slots[:sessions_needed]
    )
    log.info("student_scheduled", student=label, sessions=len(sessions), needed=sessions_needed)
    return StudentScheduleResult(sessions=sessions, success=len(sessions) == sessions_needed, errors=tuple(errors))


def schedule_roster(
    students: Sequence[StudentSpec],
    existing_sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    *,
    provider: ProviderContext,
    rules: SchedulingRules = DEFAULT_RULES,
) -> SchedulingOutcome:
    """Schedule every student in roster order.

    Each student's new sessions join the occupancy pool before the next student
    is placed, so earlier students get first pick. The caller's
    `existing_sessions` is not modified.
    """
    pool: List[SessionSpec] = list(existing_sessions)
    scheduled: List[SessionSpec] = []
    unscheduled: List[StudentSpec] = []
    errors: List[str] = []

    log.info(
        "roster_scheduling_started",
        provider=provider.provider_id,
        students=len(students),
        existing_sessions=len(pool),
    )
    for student in students:
        result = schedule_student(
            student,
            pool,
            bell_schedules,
            teacher_activities,
            provider=provider,
            rules=rules,
        )
        scheduled.extend(result.sessions)
        pool.extend(result.sessions)
        errors.extend(result.errors)
        if not result.success:
            unscheduled.append(student)

    log.info(
        "roster_scheduling_finished",
        provider=provider.provider_id,
        scheduled=len(scheduled),
        unscheduled=len(unscheduled),
    )
    return SchedulingOutcome(
        scheduled_sessions=tuple(scheduled),
        unscheduled_students=tuple(unscheduled),
        errors=tuple(errors),
    )


def schedule_input(data: SchedulingInput, *, rules: SchedulingRules = DEFAULT_RULES) -> SchedulingOutcome:
    return schedule_roster(
        [s.to_spec() for s in data.students],
        [s.to_spec() for s in data.existing_sessions],
        [b.to_spec() for b in data.bell_schedules],
        [a.to_spec() for a in data.special_activities],
        provider=ProviderContext(provider_id=data.provider_id, service_type=data.service_type),
        rules=rules,
    )


def _same_session(a: SessionSpec, b: SessionSpec) -> bool:
    if a.id is not None and b.id is not None:
        return a.id == b.id
    return a == b


def check_manual_move(
    session: SessionSpec,
    student: StudentSpec,
    day: int,
    start_time: str,
    sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    *,
    rules: SchedulingRules = DEFAULT_RULES,
) -> SlotCheck:
    """Can `session` be dragged to (day, start_time)?

    Same checks as automatic placement except the one-session-per-day rule,
    which manual moves are allowed to break. The session being moved does not
    count against itself.
    """
    start = add_minutes(start_time, 0)
    end = add_minutes(start, student.minutes_per_session)
    others = [s for s in sessions if not _same_session(s, session)]
    return validate_slot(
        student,
        day,
        start,
        end,
        others,
        bell_schedules,
        teacher_activities,
        rules=rules,
        policy=MANUAL_POLICY,
    )


def find_conflicting_slots(
    session: SessionSpec,
    student: StudentSpec,
    sessions: Sequence[SessionSpec],
    bell_schedules: Sequence[BellPeriodSpec],
    teacher_activities: Sequence[ActivitySpec],
    *,
    rules: SchedulingRules = DEFAULT_RULES,
) -> List[Tuple[int, str]]:
    """Every (day, start) on the grid where the session cannot be dropped, in day then time order."""
    conflicts: List[Tuple[int, str]] = []
    for day in rules.days:
        for start in generate_time_slots(rules):
            check = check_manual_move(
                session, student, day, start, sessions, bell_schedules, teacher_activities, rules=rules
            )
            if not check.valid:
                conflicts.append((day, start))
    log.debug("conflicts_computed", student=student.label, conflicts=len(conflicts))
    return conflicts


def conflicts_for_request(req: ManualMoveRequest, *, rules: SchedulingRules = DEFAULT_RULES) -> List[Tuple[int, str]]:
    return find_conflicting_slots(
        req.session.to_spec(),
        req.student.to_spec(),
        [s.to_spec() for s in req.sessions],
        [b.to_spec() for b in req.bell_schedules],
        [a.to_spec() for a in req.special_activities],
        rules=rules,
    )


def students_needing_sessions(
    students: Sequence[StudentSpec], sessions: Sequence[SessionSpec]
) -> List[Tuple[StudentSpec, int]]:
    """(student, missing session count) for every student holding fewer sessions than required."""
    held: Dict[str, int] = {}
    for s in sessions:
        held[s.student_id] = held.get(s.student_id, 0) + 1
    out: List[Tuple[StudentSpec, int]] = []
    for st in students:
        missing = st.sessions_per_week - held.get(st.id, 0)
        if missing > 0:
            out.append((st, missing))
    return out


def count_unscheduled_sessions(students: Sequence[StudentSpec], sessions: Sequence[SessionSpec]) -> int:
    return sum(missing for _, missing in students_needing_sessions(students, sessions))


def _format_week_grid(*, sessions: Sequence[SessionSpec], labels: Dict[str, str], days: Sequence[int]) -> str:
    # Build grid: rows=start times in use, cols=days
    starts = sorted({s.start_time[:5] for s in sessions}, key=parse_time)
    day_names = [DAY_NAMES.get(d, str(d)) for d in days]

    grid: List[List[str]] = []
    for start in starts:
        row: List[str] = []
        for d in days:
            here = [
                labels.get(s.student_id, s.student_id)
                for s in sessions
                if s.day_of_week == d and s.start_time[:5] == start
            ]
            row.append(",".join(here) if here else "-")
        grid.append(row)

    col_widths = [
        max([len(day_names[i])] + [len(grid[r][i]) for r in range(len(starts))]) for i in range(len(days))
    ]
    time_width = max([len("Time")] + [len(s) for s in starts])

    lines: List[str] = []
    header = "Time".ljust(time_width) + "  " + "  ".join(day_names[i].ljust(col_widths[i]) for i in range(len(days)))
    lines.append(header)
    for r, start in enumerate(starts):
        lines.append(start.ljust(time_width) + "  " + "  ".join(grid[r][i].ljust(col_widths[i]) for i in range(len(days))))
    return "\n".join(lines)


def _format_outcome(outcome: SchedulingOutcome, *, students: Sequence[StudentSpec], rules: SchedulingRules) -> str:
    labels = {s.id: s.label for s in students}
    lines: List[str] = [f"Scheduled sessions: {len(outcome.scheduled_sessions)}"]
    if outcome.scheduled_sessions:
        lines.append("")
        lines.append(_format_week_grid(sessions=outcome.scheduled_sessions, labels=labels, days=rules.days))
    if outcome.unscheduled_students:
        lines.append("")
        lines.append("Students needing manual placement: " + ", ".join(s.label for s in outcome.unscheduled_students))
    for err in outcome.errors:
        lines.append(f"  - {err}")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Weekly service session scheduler (greedy slot allocation).")
    parser.add_argument("--input", required=True, help="Path to input JSON file.")
    parser.add_argument("--output", help="Also write the outcome as JSON to this path.")
    parser.add_argument("--json", action="store_true", help="Print the outcome as JSON instead of a grid.")
    parser.add_argument("--log_level", help="Override SCHEDULER_LOG_LEVEL.")
    args = parser.parse_args(argv)

    cfg = get_config()
    setup_logging(json_output=cfg.log_json, log_level=args.log_level or cfg.log_level)
    rules = SchedulingRules.from_config(cfg)

    try:
        data = SchedulingInput.load_file(args.input)
    except (OSError, ValueError) as e:
        parser.error(f"cannot load {args.input}: {e}")

    outcome = schedule_input(data, rules=rules)
    payload = outcome.to_json_dict()

    if args.output:
        Path(args.output).write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    print(_format_outcome(outcome, students=[s.to_spec() for s in data.students], rules=rules))


if __name__ == "__main__":
    main()
