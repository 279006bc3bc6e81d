"""
Workflow Coordinator
====================
Plan-level bookkeeping that is not a planning stage of its own:
completion metrics and approval, the retry decision after a failure,
and applying a human approval decision.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from agents.context import PlanContext, PlanningServices, stage_boundary
from services.plans import PlanStatus, PlanStep

logger = logging.getLogger(__name__)


def compute_plan_metrics(state: dict, finished_at: Optional[datetime] = None) -> dict:
    finished_at = finished_at or datetime.now(timezone.utc)
    route = (state.get("route_output") or {}).get("optimized_route") or {}
    inventory = state.get("inventory_output") or {}
    created = list(state.get("created_job_ids") or [])
    original = list(state.get("job_ids") or [])

    duration_ms = 0
    if state.get("started_at"):
        started = datetime.fromisoformat(state["started_at"])
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        duration_ms = int((finished_at - started).total_seconds() * 1000)

    return {
        "total_jobs": len(original) + len(created),
        "original_jobs": len(original),
        "hardware_store_jobs": len(inventory.get("created_hardware_store_jobs") or []),
        "total_distance_km": round((route.get("total_distance") or 0) / 1000, 2),
        "total_travel_minutes": route.get("total_travel_time") or 0,
        "shopping_items": len(inventory.get("shopping_list") or []),
        "alerts": len(inventory.get("inventory_alerts") or []),
        "retry_count": state.get("retry_count", 0),
        "workflow_duration_ms": duration_ms,
    }


async def complete_plan(services: PlanningServices, ctx: PlanContext, state: dict) -> dict:
    """Mark the plan approved and return the run metrics."""
    async with stage_boundary(services, ctx, PlanStep.COMPLETE.value):
        metrics = compute_plan_metrics(state)
        await services.plans.approve_plan(ctx.plan_id)
        logger.info(
            f"Plan {ctx.plan_id} approved: {metrics['total_jobs']} jobs, "
            f"{metrics['total_distance_km']} km, {metrics['shopping_items']} shopping items"
        )
        return metrics


async def handle_workflow_error(
    services: PlanningServices,
    ctx: PlanContext,
    error_state: dict,
    retry_count: int,
    max_retries: int,
) -> dict:
    """
    Count the failed attempt. Below max_retries the plan goes back to
    pending/dispatch for a full restart; at max_retries it is terminal.
    A restart clears the stale error and forgets the ids of jobs created by
    the failed attempt; those jobs stay in the job table.
    """
    attempts = retry_count + 1
    if attempts < max_retries:
        await services.plans.update_plan(
            ctx.plan_id,
            status=PlanStatus.PENDING,
            current_step=PlanStep.DISPATCH,
            retry_count=attempts,
            error_state=None,
            created_job_ids=[],
        )
        logger.warning(
            f"Plan {ctx.plan_id} attempt {attempts}/{max_retries} failed at "
            f"{error_state.get('failed_step')}, restarting from dispatch"
        )
        return {"retry": True, "retry_count": attempts, "error_state": error_state}

    terminal = {**error_state, "retry_suggested": False}
    await services.plans.mark_error(ctx.plan_id, terminal, retry_count=attempts)
    logger.error(f"Plan {ctx.plan_id} failed permanently after {attempts} attempts")
    return {"retry": False, "retry_count": attempts, "error_state": terminal}


async def apply_approval_decision(
    services: PlanningServices, ctx: PlanContext, approval_step: str, decision: dict
) -> bool:
    """Persist any user modifications; cancel the plan on rejection. Returns approved."""
    async with stage_boundary(services, ctx, PlanStep.HUMAN_VERIFICATION.value):
        approved = bool(decision.get("approved"))
        modifications = decision.get("modifications")
        if modifications:
            await services.plans.save_user_modifications(ctx.plan_id, {approval_step: modifications})
        if not approved:
            await services.plans.cancel_plan(ctx.plan_id)
            logger.info(f"Plan {ctx.plan_id} rejected at {approval_step}")
        return approved
