import pytest

from schedule_rules import (
    AUTOMATIC_POLICY,
    DEFAULT_RULES,
    MANUAL_POLICY,
    ActivitySpec,
    BellPeriodSpec,
    SchedulingRules,
    SessionSpec,
    StudentSpec,
    add_minutes,
    count_sessions_by_day,
    format_time,
    generate_time_slots,
    parse_time,
    times_overlap,
    validate_slot,
)
from scheduler_config import SchedulerConfig, get_config, reset_config
from scheduler_errors import ConfigurationError, InvalidRecordError

STUDENT = StudentSpec(
    id="s1",
    initials="AB",
    grade_level="2",
    teacher_name="Ms. Lopez",
    sessions_per_week=2,
    minutes_per_session=30,
)


def _other(student_id, day, start, end):
    return SessionSpec(student_id=student_id, day_of_week=day, start_time=start, end_time=end)


def _check(day=1, start="09:00", end="09:30", sessions=(), bells=(), activities=(), in_progress=(), **kw):
    return validate_slot(STUDENT, day, start, end, list(sessions), list(bells), list(activities), list(in_progress), **kw)


def test_parse_time_accepts_both_forms():
    assert parse_time("08:00") == 480
    assert parse_time("14:30:00") == 870
    assert parse_time("9:05") == 545
    assert parse_time(" 15:00 ") == 900


@pytest.mark.parametrize("bad", ["", "9", "10h00", "24:00", "12:60", "12:00:99", None])
def test_parse_time_rejects_malformed(bad):
    with pytest.raises(InvalidRecordError):
        parse_time(bad)


def test_invalid_record_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_time("noon")


def test_format_and_add_minutes():
    assert format_time(545) == "09:05"
    assert format_time(545, seconds=True) == "09:05:00"
    assert add_minutes("14:30", 30) == "15:00:00"
    assert add_minutes("08:45:00", 20) == "09:05:00"


def test_overlap_is_half_open():
    assert times_overlap("09:00", "09:30", "09:15", "09:45")
    assert times_overlap("09:00", "10:00", "09:15", "09:30")
    assert not times_overlap("09:00", "09:30", "09:30", "10:00")
    assert not times_overlap("09:30", "10:00", "09:00", "09:30")


def test_time_slot_grid():
    slots = generate_time_slots()
    assert slots[0] == "08:00"
    assert slots[1] == "08:15"
    assert slots[-1] == "14:30"
    assert len(slots) == 27
    assert generate_time_slots() == slots


def test_count_sessions_by_day():
    sessions = [_other("a", 1, "09:00", "09:30"), _other("b", 1, "10:00", "10:30"), _other("c", 4, "09:00", "09:30")]
    assert count_sessions_by_day(sessions) == {1: 2, 4: 1}


def test_valid_slot():
    check = _check()
    assert check.valid
    assert check.reason is None


def test_cutoff():
    assert _check(start="14:30", end="15:00").valid
    check = _check(start="14:30", end="15:15")
    assert not check.valid
    assert check.reason == "Extends beyond school hours"


def test_bell_schedule_conflict_matches_grade_and_day():
    recess = BellPeriodSpec(grades=("K", "1", "2"), day_of_week=1, start_time="09:15", end_time="09:35", period_name="Recess")
    check = _check(bells=[recess])
    assert not check.valid
    assert check.reason == "Conflicts with Recess"

    assert _check(day=2, bells=[recess]).valid
    assert _check(start="09:35", end="10:05", bells=[recess]).valid
    other_grade = BellPeriodSpec(grades=("3", "4"), day_of_week=1, start_time="09:00", end_time="10:00", period_name="Lunch")
    assert _check(bells=[other_grade]).valid


def test_teacher_activity_conflict():
    pe = ActivitySpec(teacher_name="Ms. Lopez", day_of_week=2, start_time="09:00", end_time="09:30", activity_name="PE")
    check = _check(day=2, start="08:45", end="09:15", activities=[pe])
    assert not check.valid
    assert check.reason == "Teacher has PE"

    assert _check(day=2, start="09:30", end="10:00", activities=[pe]).valid
    other_teacher = ActivitySpec(teacher_name="Mr. Chen", day_of_week=2, start_time="09:00", end_time="09:30", activity_name="Art")
    assert _check(day=2, activities=[other_teacher]).valid


def test_same_student_overlap_reported_before_one_per_day():
    own = _other("s1", 1, "09:15", "09:45")
    check = _check(sessions=[own])
    assert check.reason == "Student already has a session at this time"


def test_one_session_per_day():
    own = _other("s1", 1, "13:00", "13:30")
    check = _check(sessions=[own])
    assert not check.valid
    assert check.reason == "Student already scheduled today (one session per day rule)"

    placed = _other("s1", 3, "08:00", "08:30")
    assert _check(day=3, in_progress=[placed]).reason == "Student already scheduled today (one session per day rule)"
    assert _check(day=4, in_progress=[placed]).valid


def test_manual_policy_allows_second_session_same_day():
    own = _other("s1", 1, "13:00", "13:30")
    assert _check(sessions=[own], policy=MANUAL_POLICY).valid
    overlapping = _other("s1", 1, "09:00", "09:30")
    assert _check(sessions=[overlapping], policy=MANUAL_POLICY).reason == "Student already has a session at this time"


def test_capacity():
    three = [_other(f"x{i}", 1, "09:00", "09:30") for i in range(3)]
    assert _check(sessions=three).valid

    four = three + [_other("x3", 1, "09:15", "09:45")]
    check = _check(sessions=four)
    assert not check.valid
    assert check.reason == "Time slot full"

    # Touching sessions and other days do not count
    assert _check(start="09:45", end="10:15", sessions=four).valid
    assert _check(day=2, sessions=four).valid


def test_first_failure_wins():
    recess = BellPeriodSpec(grades=("2",), day_of_week=1, start_time="14:30", end_time="15:00", period_name="Recess")
    check = _check(start="14:45", end="15:15", bells=[recess])
    assert check.reason == "Extends beyond school hours"

    pe = ActivitySpec(teacher_name="Ms. Lopez", day_of_week=1, start_time="09:00", end_time="09:30", activity_name="PE")
    recess = BellPeriodSpec(grades=("2",), day_of_week=1, start_time="09:00", end_time="09:30", period_name="Recess")
    assert _check(bells=[recess], activities=[pe]).reason == "Conflicts with Recess"


def test_teacher_activity_reported_before_own_overlap():
    own = _other("s1", 1, "09:00", "09:30")
    pe = ActivitySpec(teacher_name="Ms. Lopez", day_of_week=1, start_time="09:00", end_time="09:30", activity_name="PE")
    assert _check(sessions=[own], activities=[pe]).reason == "Teacher has PE"


def test_one_per_day_reported_before_full_slot():
    four = [_other(f"x{i}", 1, "09:00", "09:30") for i in range(4)]
    own = _other("s1", 1, "13:00", "13:30")
    check = _check(sessions=four + [own])
    assert check.reason == "Student already scheduled today (one session per day rule)"


def test_rules_from_config():
    rules = SchedulingRules.from_config(SchedulerConfig(slot_capacity=2, last_slot_start="10:00", slot_interval_minutes=30))
    assert rules.slot_capacity == 2
    assert generate_time_slots(rules) == ("08:00", "08:30", "09:00", "09:30", "10:00")
    assert SchedulingRules.from_config(SchedulerConfig()) == DEFAULT_RULES


def test_rules_reject_unusable_settings():
    with pytest.raises(ConfigurationError):
        SchedulingRules.from_config(SchedulerConfig(day_end_cutoff="3pm"))
    with pytest.raises(ConfigurationError):
        SchedulingRules(slot_capacity=0)
    with pytest.raises(ConfigurationError):
        SchedulingRules(day_start=600, last_slot_start=480)


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("SCHEDULER_SLOT_CAPACITY", "3")
    reset_config()
    try:
        assert get_config().slot_capacity == 3
        assert SchedulingRules.from_config(get_config()).slot_capacity == 3
    finally:
        reset_config()


def test_capacity_follows_rules():
    two = [_other(f"x{i}", 1, "09:00", "09:30") for i in range(2)]
    assert _check(sessions=two).valid
    assert _check(sessions=two, rules=SchedulingRules(slot_capacity=2), policy=AUTOMATIC_POLICY).reason == "Time slot full"
