"""
Dispatch Stage
==============
Orders the day's jobs.
- Fetches the jobs and the user's dispatcher preferences
- Asks the LLM for a prioritized schedule as a JSON object
- Validates the reply against DispatchResponse
- Falls back to a deterministic priority sort when the reply is unusable
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from agents.context import PlanContext, PlanningServices, load_preferences, stage_boundary
from config.prompts import DISPATCHER_JOBS_PROMPT, DISPATCHER_OUTPUT_CONTRACT, DISPATCHER_SYSTEM_PROMPT
from config.settings import AGENTS, WORKFLOW
from services.errors import StageValidationError
from services.plans import PlanStatus, PlanStep
from services.preferences import format_dispatcher_preferences, inject_preferences_into_prompt

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"urgent": 0, "high": 1, "medium": 2, "low": 3}
UNKNOWN_PRIORITY_RANK = 3

FALLBACK_REASONING = "Applied basic priority sorting by job urgency and type"
FALLBACK_RECOMMENDATIONS = ["Jobs prioritized by urgency level"]
DEFAULT_REASONING = "Jobs prioritized by urgency and type"

EMERGENCY_KEYWORDS = ("emergency", "urgent", "leak", "flood", "gas", "electrical", "hazard", "safety")

CLOCK_PATTERN = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?")


# ============================================================
# Time helpers (plan times are naive ISO strings in local time)
# ============================================================


def schedule_datetime(plan_date: str, clock: str) -> datetime:
    return datetime.strptime(f"{plan_date} {clock}", "%Y-%m-%d %H:%M")


def to_epoch(iso_time: str) -> int:
    moment = datetime.fromisoformat(iso_time)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def normalize_plan_time(value, plan_date: Optional[str]) -> Optional[str]:
    """
    Place a reply time on the plan's clock as a naive ISO datetime.

    Accepts full ISO datetimes (offsets are converted to UTC and dropped) and
    bare clock times such as "09:00" or "2:30 pm", which need the plan date.
    Anything else becomes None so the caller can fill in a slot.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    clock = CLOCK_PATTERN.fullmatch(text)
    if clock:
        if not plan_date:
            return None
        hour, minute, second = int(clock.group(1)), int(clock.group(2)), int(clock.group(3) or 0)
        meridiem = (clock.group(4) or "").lower()
        if meridiem:
            if not 1 <= hour <= 12:
                return None
            hour = hour % 12 + (12 if meridiem == "pm" else 0)
        try:
            return datetime.strptime(plan_date, "%Y-%m-%d").replace(
                hour=hour, minute=minute, second=second
            ).isoformat()
        except ValueError:
            return None

    # A bare date carries no time of day
    if len(text) <= 10:
        return None
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat()


def from_epoch(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None).isoformat()


# ============================================================
# LLM response contract
# ============================================================


class PrioritizedJob(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    job_id: str
    priority_rank: int
    estimated_start_time: Optional[str] = None
    estimated_end_time: Optional[str] = None
    priority_reason: str = ""
    job_type: str = "maintenance"
    buffer_time_minutes: int = 15
    scheduling_notes: str = ""

    @field_validator("estimated_start_time", "estimated_end_time", mode="before")
    @classmethod
    def place_on_plan_date(cls, value, info: ValidationInfo):
        plan_date = (info.context or {}).get("plan_date")
        return normalize_plan_time(value, plan_date)


class SchedulingConstraints(BaseModel):
    model_config = ConfigDict(extra="ignore")

    work_start_time: str = "08:00"
    work_end_time: str = "17:00"
    lunch_break_start: str = "12:00"
    lunch_break_end: str = "13:00"
    total_work_hours: float = 8
    total_jobs_scheduled: int = 0
    schedule_conflicts: list[str] = Field(default_factory=list)


class DispatchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prioritized_jobs: Optional[list[PrioritizedJob]] = None
    scheduling_constraints: Optional[SchedulingConstraints] = None
    recommendations: list[str] = Field(default_factory=list)
    agent_reasoning: str = DEFAULT_REASONING


def extract_json_object(text: Optional[str]) -> Optional[str]:
    """The outermost {...} span of a free-text reply, or None."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    return text[start:end]


# ============================================================
# Deterministic pieces
# ============================================================


def priority_rank_of(job: dict) -> int:
    return PRIORITY_ORDER.get(str(job.get("priority") or "").lower(), UNKNOWN_PRIORITY_RANK)


def classify_job(job: dict, prefs: dict) -> str:
    """emergency, demand or maintenance."""
    emergency_types = {t.lower() for t in prefs.get("emergency_job_types", [])}
    text = f"{job.get('title') or ''} {job.get('description') or ''}".lower()
    if str(job.get("job_type", "")).lower() in emergency_types:
        return "emergency"
    if any(keyword in text for keyword in EMERGENCY_KEYWORDS):
        return "emergency"
    if str(job.get("priority", "")).lower() in ("urgent", "high"):
        return "demand"
    return "maintenance"


def _slot(plan_date: str, prefs: dict, index: int) -> tuple[str, str]:
    length = WORKFLOW["fallback_slot_minutes"]
    begin = schedule_datetime(plan_date, prefs["work_start_time"]) + timedelta(minutes=index * length)
    return begin.isoformat(), (begin + timedelta(minutes=length)).isoformat()


def _buffer_for(job: dict, prefs: dict) -> int:
    if str(job.get("priority", "")).lower() == "urgent":
        return prefs["emergency_buffer_minutes"]
    return prefs["job_duration_buffer_minutes"]


def fallback_prioritization(jobs: list[dict], prefs: dict, plan_date: str) -> list[dict]:
    """Stable sort by priority label with evenly spaced slots from work start."""
    ordered = sorted(jobs, key=priority_rank_of)
    entries = []
    for index, job in enumerate(ordered):
        start, end = _slot(plan_date, prefs, index)
        entries.append({
            "job_id": str(job["id"]),
            "priority_rank": index + 1,
            "estimated_start_time": start,
            "estimated_end_time": end,
            "priority_reason": f"{job.get('priority') or 'unknown'} priority",
            "job_type": classify_job(job, prefs),
            "buffer_time_minutes": _buffer_for(job, prefs),
            "scheduling_notes": "",
        })
    return entries


def default_scheduling_constraints(prefs: dict, prioritized: list[dict], plan_date: str) -> dict:
    work_start = schedule_datetime(plan_date, prefs["work_start_time"])
    work_end = schedule_datetime(plan_date, prefs["work_end_time"])
    conflicts = [
        f"Job {entry['job_id']} ends after {prefs['work_end_time']}"
        for entry in prioritized
        if entry.get("estimated_end_time")
        and datetime.fromisoformat(entry["estimated_end_time"]) > work_end
    ]
    return {
        "work_start_time": prefs["work_start_time"],
        "work_end_time": prefs["work_end_time"],
        "lunch_break_start": prefs["lunch_break_start"],
        "lunch_break_end": prefs["lunch_break_end"],
        "total_work_hours": round((work_end - work_start).total_seconds() / 3600, 2),
        "total_jobs_scheduled": len(prioritized),
        "schedule_conflicts": conflicts,
    }


def optimization_summary(jobs: list[dict], prefs: dict) -> dict:
    vip_ids = {str(v) for v in prefs.get("vip_client_ids", [])}
    counts = {"emergency": 0, "demand": 0, "maintenance": 0}
    for job in jobs:
        counts[classify_job(job, prefs)] += 1
    return {
        "total_jobs": len(jobs),
        "emergency_jobs": counts["emergency"],
        "demand_jobs": counts["demand"],
        "maintenance_jobs": counts["maintenance"],
        "vip_jobs": sum(1 for job in jobs if str(job.get("customer_id")) in vip_ids),
    }


def build_fallback_output(jobs: list[dict], prefs: dict, plan_date: str) -> dict:
    prioritized = fallback_prioritization(jobs, prefs, plan_date)
    return {
        "prioritized_jobs": prioritized,
        "scheduling_constraints": default_scheduling_constraints(prefs, prioritized, plan_date),
        "recommendations": list(FALLBACK_RECOMMENDATIONS),
        "agent_reasoning": FALLBACK_REASONING,
        "optimization_summary": optimization_summary(jobs, prefs),
        "fallback_used": True,
    }


# ============================================================
# Parsing
# ============================================================


def parse_dispatch_response(content: Optional[str], jobs: list[dict], prefs: dict, plan_date: str) -> dict:
    """
    Turn an LLM reply into dispatch output.
    Unparseable replies, replies that fail validation, and replies naming jobs
    that were not requested all take the fallback path.
    """
    raw = extract_json_object(content)
    if raw is None:
        logger.warning("Dispatch reply had no JSON object, using fallback prioritization")
        return build_fallback_output(jobs, prefs, plan_date)

    try:
        response = DispatchResponse.model_validate_json(raw, context={"plan_date": plan_date})
    except ValidationError as exc:
        logger.warning(f"Dispatch reply failed validation ({exc.error_count()} errors), using fallback")
        return build_fallback_output(jobs, prefs, plan_date)

    jobs_by_id = {str(job["id"]): job for job in jobs}

    if response.prioritized_jobs is None:
        prioritized = fallback_prioritization(jobs, prefs, plan_date)
    else:
        returned_ids = [p.job_id for p in response.prioritized_jobs]
        unknown = [job_id for job_id in returned_ids if job_id not in jobs_by_id]
        if unknown or len(set(returned_ids)) != len(returned_ids):
            logger.warning(f"Dispatch reply referenced unknown or repeated jobs {unknown}, using fallback")
            return build_fallback_output(jobs, prefs, plan_date)

        ranked = [p.model_dump() for p in sorted(response.prioritized_jobs, key=lambda p: p.priority_rank)]
        returned = set(returned_ids)
        omitted = [
            entry for entry in fallback_prioritization(jobs, prefs, plan_date)
            if entry["job_id"] not in returned
        ]
        if omitted:
            logger.info(f"Dispatch reply omitted {len(omitted)} job(s), appending in priority order")

        prioritized = []
        for index, entry in enumerate(ranked + omitted):
            start, end = _slot(plan_date, prefs, index)
            entry["priority_rank"] = index + 1
            entry["estimated_start_time"] = entry.get("estimated_start_time") or start
            entry["estimated_end_time"] = entry.get("estimated_end_time") or end
            prioritized.append(entry)

    if response.scheduling_constraints is None:
        constraints = default_scheduling_constraints(prefs, prioritized, plan_date)
    else:
        constraints = response.scheduling_constraints.model_dump()

    return {
        "prioritized_jobs": prioritized,
        "scheduling_constraints": constraints,
        "recommendations": response.recommendations,
        "agent_reasoning": response.agent_reasoning,
        "optimization_summary": optimization_summary(jobs, prefs),
        "fallback_used": False,
    }


# ============================================================
# Stage
# ============================================================


def _job_for_prompt(job: dict, prefs: dict) -> dict:
    vip_ids = {str(v) for v in prefs.get("vip_client_ids", [])}
    return {
        "id": str(job["id"]),
        "title": job.get("title"),
        "description": job.get("description"),
        "job_type": job.get("job_type"),
        "priority": job.get("priority"),
        "classification": classify_job(job, prefs),
        "address": job.get("address"),
        "estimated_duration_minutes": job.get("estimated_duration") or 60,
        "requested_time": job.get("scheduled_time"),
        "customer_name": job.get("customer_name"),
        "vip": str(job.get("customer_id")) in vip_ids,
    }


def build_dispatch_messages(jobs: list[dict], prefs: dict, plan_date: str) -> list[dict]:
    system = inject_preferences_into_prompt(
        DISPATCHER_SYSTEM_PROMPT, format_dispatcher_preferences(prefs)
    )
    user = DISPATCHER_JOBS_PROMPT.format(
        plan_date=plan_date,
        jobs_json=json.dumps([_job_for_prompt(job, prefs) for job in jobs], indent=2),
        output_contract=DISPATCHER_OUTPUT_CONTRACT,
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


async def run_dispatch(services: PlanningServices, ctx: PlanContext) -> dict:
    """Prioritize the plan's jobs and store the dispatch output on the plan."""
    async with stage_boundary(services, ctx, PlanStep.DISPATCH.value):
        if not ctx.job_ids:
            raise StageValidationError("dispatch", "At least one job id is required for dispatch")

        await services.plans.update_plan(ctx.plan_id, current_step=PlanStep.DISPATCH)
        prefs = await load_preferences(services, ctx)

        jobs = await services.jobs.get_jobs_by_ids(ctx.user_id, ctx.job_ids)
        if not jobs:
            raise StageValidationError(
                "dispatch", "None of the requested jobs were found", {"job_ids": ctx.job_ids}
            )
        missing = sorted(set(ctx.job_ids) - {str(job["id"]) for job in jobs})
        if missing:
            logger.warning(f"Dispatch for plan {ctx.plan_id}: {len(missing)} job id(s) not found")

        response = await services.llm.chat(
            build_dispatch_messages(jobs, prefs, ctx.plan_date),
            model=AGENTS["dispatcher"]["model"],
            response_format={"type": "json_object"},
        )
        output = parse_dispatch_response(response.get("content"), jobs, prefs, ctx.plan_date)
        output["missing_job_ids"] = missing

        await services.plans.update_plan(
            ctx.plan_id,
            status=PlanStatus.DISPATCH_COMPLETE,
            current_step=PlanStep.ROUTE,
            dispatch_output=output,
        )
        logger.info(
            f"Dispatch complete for plan {ctx.plan_id}: {len(output['prioritized_jobs'])} jobs"
            f"{' (fallback)' if output['fallback_used'] else ''}"
        )
        return output
