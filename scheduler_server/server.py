from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from schedule_rules import DAY_NAMES, SchedulingRules, generate_time_slots
from scheduler_config import get_config
from scheduler_errors import ConfigurationError
from scheduler_logging import get_logger, setup_logging
from session_scheduler import (
    conflicts_for_request,
    count_unscheduled_sessions,
    schedule_input,
    students_needing_sessions,
)
from session_schema import ManualMoveRequest, SchedulingInput, UnscheduledCountRequest

_cfg = get_config()
setup_logging(json_output=_cfg.log_json, log_level=_cfg.log_level)
log = get_logger(__name__)

app = FastAPI()

# Allow requests from the Next.js development server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _rules() -> SchedulingRules:
    try:
        return SchedulingRules.from_config(get_config())
    except ConfigurationError as e:
        log.error("bad_scheduler_config", error=str(e))
        raise HTTPException(status_code=500, detail=f"Scheduler misconfigured: {e}") from e


@app.get("/time-slots")
async def get_time_slots():
    """The weekday grid the scheduler and the drag-and-drop view share."""
    rules = _rules()
    return {
        "days": [{"day_of_week": d, "name": DAY_NAMES.get(d, str(d))} for d in rules.days],
        "time_slots": list(generate_time_slots(rules)),
        "slot_capacity": rules.slot_capacity,
    }


@app.post("/schedule")
async def schedule_endpoint(request: SchedulingInput):
    if not request.students:
        raise HTTPException(status_code=400, detail="No students to schedule.")
    outcome = schedule_input(request, rules=_rules())
    # Persisting the new sessions is the caller's job.
    return outcome.to_json_dict()


@app.post("/conflicts")
async def conflicts_endpoint(request: ManualMoveRequest):
    conflicts = conflicts_for_request(request, rules=_rules())
    return {"conflicts": [{"day_of_week": d, "start_time": t} for d, t in conflicts]}


@app.post("/unscheduled-count")
async def unscheduled_count_endpoint(request: UnscheduledCountRequest):
    students_in = [s.to_spec() for s in request.students]
    sessions_in = [s.to_spec() for s in request.sessions]
    needing = students_needing_sessions(students_in, sessions_in)
    students: List[Dict[str, Any]] = [{"id": st.id, "initials": st.initials, "missing": n} for st, n in needing]
    return {"count": count_unscheduled_sessions(students_in, sessions_in), "students": students}
