"""
Workflow Entry Point
====================
Starts and resumes daily-planning runs.

execute_daily_planning_workflow validates the request, creates the plan row,
and streams the graph until it finishes or pauses for human approval.
resume_daily_planning continues a paused run with the user's decision.
"""

import logging
import uuid
from datetime import date
from typing import Any, Optional

from langgraph.types import Command

from agents.context import PlanningServices
from config.settings import WORKFLOW
from graph.builder import compile_graph
from graph.machine import WorkflowStep
from services.errors import utc_now_iso
from services.preferences import merge_preferences, validate_preferences

logger = logging.getLogger(__name__)


def _validate_request(user_id: str, job_ids: list[str], plan_date: str) -> None:
    if not user_id:
        raise ValueError("user_id is required")
    if not job_ids:
        raise ValueError("At least one job id is required")
    try:
        date.fromisoformat(plan_date)
    except (TypeError, ValueError):
        raise ValueError(f"plan_date must be YYYY-MM-DD, got {plan_date!r}") from None


def run_config(services: PlanningServices, thread_id: str, agent_callback=None) -> dict:
    configurable: dict[str, Any] = {"thread_id": thread_id, "services": services}
    if agent_callback:
        configurable["agent_callback"] = agent_callback
    return {"configurable": configurable, "recursion_limit": WORKFLOW["recursion_limit"]}


async def _stream(graph, graph_input, config: dict) -> dict:
    """Drive the graph to its next stop and return the resulting state values."""
    pending = None
    async for event in graph.astream(graph_input, config=config, stream_mode="updates"):
        for node_name, update in event.items():
            if node_name == "__interrupt__":
                interrupts = update if isinstance(update, (list, tuple)) else [update]
                pending = getattr(interrupts[0], "value", interrupts[0])
            else:
                logger.debug(f"Node {node_name} finished: {sorted(update or {})}")

    snapshot = await graph.aget_state(config)
    if pending is None:
        for task in snapshot.tasks or ():
            if task.interrupts:
                pending = task.interrupts[0].value
                break

    result = dict(snapshot.values)
    result["thread_id"] = config["configurable"]["thread_id"]
    result["pending_approval"] = pending
    return result


async def execute_daily_planning_workflow(
    services: PlanningServices,
    user_id: str,
    job_ids: list[str],
    plan_date: str,
    preference_overrides: Optional[dict] = None,
    graph=None,
    thread_id: Optional[str] = None,
    agent_callback=None,
) -> dict:
    """
    Plan one day for one user.

    Returns the final graph state plus thread_id and pending_approval (the
    interrupt payload when the run paused for sign-off, otherwise None).
    Raises ValueError for an invalid request or invalid merged preferences.
    """
    _validate_request(user_id, job_ids, plan_date)

    stored = await services.preferences.get_user_preferences(user_id)
    prefs = merge_preferences(stored, preference_overrides)
    errors = validate_preferences(prefs)
    if errors:
        raise ValueError("Invalid preferences: " + "; ".join(errors))

    plan = await services.plans.create_plan(user_id, plan_date, job_ids, preferences_snapshot=prefs)
    graph = graph or compile_graph()
    thread_id = thread_id or str(uuid.uuid4())

    initial_state = {
        "messages": [],
        "user_id": user_id,
        "plan_id": str(plan["id"]),
        "plan_date": plan_date,
        "job_ids": [str(job_id) for job_id in job_ids],
        "preference_overrides": preference_overrides,
        "started_at": utc_now_iso(),
        "current_step": WorkflowStep.DISPATCH.value,
        "error": None,
        "last_error": None,
        "is_complete": False,
        "awaiting_human_approval": False,
        "approval_step": "none",
        "approval_checkpoints": list(prefs.get("approval_checkpoints") or []),
        "retry_count": 0,
        "max_retries": WORKFLOW["max_retries"],
        "dispatch_output": None,
        "route_output": None,
        "inventory_output": None,
        "created_job_ids": [],
        "final_status": None,
        "metrics": None,
        "transitions": [],
    }

    logger.info(f"Planning {len(job_ids)} jobs for user {user_id} on {plan_date} (plan {plan['id']})")
    result = await _stream(graph, initial_state, run_config(services, thread_id, agent_callback))
    logger.info(
        f"Plan {plan['id']} stopped at {result.get('current_step')}: "
        f"final_status={result.get('final_status')}, paused={result['pending_approval'] is not None}"
    )
    return result


async def resume_daily_planning(
    services: PlanningServices,
    graph,
    thread_id: str,
    approved: bool,
    modifications: Optional[dict] = None,
    agent_callback=None,
) -> dict:
    """Continue a run paused at human verification."""
    decision = {"approved": bool(approved), "modifications": modifications or {}}
    logger.info(f"Resuming thread {thread_id} with approved={decision['approved']}")
    return await _stream(graph, Command(resume=decision), run_config(services, thread_id, agent_callback))
