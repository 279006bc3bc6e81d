"""
Graph Nodes
============
Thin wrapper functions that serve as entry points for the LangGraph StateGraph.
Each node runs one step of the planning machine through the agent modules
and returns a partial state update: the next step, the stage output, a
summary message and the transition records it caused.

Stage failures arrive as StageFailure (the plan row is already marked) and
become the `error` key that routes to the error handler.
"""

import logging

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig
from langgraph.types import interrupt

from agents.context import context_from_state, get_services, notify
from agents.coordinator import apply_approval_decision, complete_plan, handle_workflow_error
from agents.dispatcher import run_dispatch
from agents.inventory import create_hardware_store_jobs, run_inventory
from agents.router import run_route
from graph.machine import (
    APPROVABLE_STAGES,
    WorkflowEvent,
    WorkflowStep,
    approval_step_for,
    record,
    transition,
)
from graph.state import PlanningState
from services.errors import StageFailure

logger = logging.getLogger(__name__)

# Stage output shown to the reviewer for each approval tag
APPROVAL_OUTPUT_KEYS = {
    "dispatch_approval": ("dispatch", "dispatch_output"),
    "route_approval": ("route", "route_output"),
    "inventory_approval": ("inventory", "inventory_output"),
}


# ============================================================
# Helpers
# ============================================================


def _advance(
    state: PlanningState, step: WorkflowStep, event: WorkflowEvent = WorkflowEvent.COMPLETED
) -> dict:
    """Move past a finished stage, requesting sign-off when the stage is a checkpoint."""
    next_step = transition(step, event)
    update = {
        "current_step": next_step.value,
        "transitions": [record(step, event, next_step)],
    }
    checkpoints = state.get("approval_checkpoints") or []
    if step in APPROVABLE_STAGES and step.value in checkpoints:
        update["awaiting_human_approval"] = True
        update["transitions"].append(
            record(step, WorkflowEvent.APPROVAL_REQUESTED, WorkflowStep.HUMAN_VERIFICATION)
        )
    return update


def _failed(step: WorkflowStep, failure: StageFailure) -> dict:
    target = transition(step, WorkflowEvent.FAILED)
    return {
        "error": failure.error_state,
        "last_error": failure.error_state,
        "transitions": [record(step, WorkflowEvent.FAILED, target)],
        "messages": [AIMessage(content=f"**{step.value}** failed: {failure.error_state['error_message']}")],
    }


# ============================================================
# Stage Nodes
# ============================================================


async def dispatch_node(state: PlanningState, config: RunnableConfig) -> dict:
    services, ctx = get_services(config), context_from_state(state)
    await notify(config, "dispatcher", f"Prioritizing {len(ctx.job_ids)} jobs for {ctx.plan_date}")

    try:
        output = await run_dispatch(services, ctx)
    except StageFailure as failure:
        return _failed(WorkflowStep.DISPATCH, failure)

    summary = f"Prioritized {len(output['prioritized_jobs'])} jobs. {output['agent_reasoning']}"
    await notify(config, "dispatcher", summary)
    return {
        **_advance(state, WorkflowStep.DISPATCH),
        "dispatch_output": output,
        "messages": [AIMessage(content=summary)],
    }


async def route_node(state: PlanningState, config: RunnableConfig) -> dict:
    services, ctx = get_services(config), context_from_state(state)
    await notify(config, "router", "Optimizing the driving route")

    try:
        output = await run_route(services, ctx, state.get("dispatch_output"))
    except StageFailure as failure:
        return _failed(WorkflowStep.ROUTE, failure)

    await notify(config, "router", output["optimization_notes"])
    return {
        **_advance(state, WorkflowStep.ROUTE),
        "route_output": output,
        "messages": [AIMessage(content=output["optimization_notes"])],
    }


async def inventory_node(state: PlanningState, config: RunnableConfig) -> dict:
    services, ctx = get_services(config), context_from_state(state)
    await notify(config, "inventory", "Checking parts and van stock")

    try:
        output = await run_inventory(services, ctx, state.get("dispatch_output"))
    except StageFailure as failure:
        return _failed(WorkflowStep.INVENTORY, failure)

    store_run = output.get("hardware_store_run") or {}
    event = WorkflowEvent.STORE_RUN_PLANNED if store_run.get("store_locations") else WorkflowEvent.COMPLETED
    await notify(config, "inventory", output["agent_reasoning"])
    return {
        **_advance(state, WorkflowStep.INVENTORY, event),
        "inventory_output": output,
        "messages": [AIMessage(content=output["agent_reasoning"])],
    }


async def hardware_store_creation_node(state: PlanningState, config: RunnableConfig) -> dict:
    services, ctx = get_services(config), context_from_state(state)

    try:
        result = await create_hardware_store_jobs(
            services, ctx, state.get("inventory_output"), state.get("created_job_ids")
        )
    except StageFailure as failure:
        return _failed(WorkflowStep.HARDWARE_STORE_CREATION, failure)

    created = result["inventory_output"]["created_hardware_store_jobs"]
    summary = f"Added {len(created)} hardware store stop(s): " + ", ".join(c["store_name"] for c in created)
    await notify(config, "inventory", summary)
    return {
        **_advance(state, WorkflowStep.HARDWARE_STORE_CREATION),
        "created_job_ids": result["created_job_ids"],
        "inventory_output": result["inventory_output"],
        "messages": [AIMessage(content=summary)],
    }


async def complete_node(state: PlanningState, config: RunnableConfig) -> dict:
    services, ctx = get_services(config), context_from_state(state)

    try:
        metrics = await complete_plan(services, ctx, state)
    except StageFailure as failure:
        return _failed(WorkflowStep.COMPLETE, failure)

    summary = (
        f"Plan for {ctx.plan_date} approved: {metrics['total_jobs']} jobs, "
        f"{metrics['total_distance_km']} km, {metrics['shopping_items']} item(s) to buy."
    )
    await notify(config, "system", summary)
    return {
        **_advance(state, WorkflowStep.COMPLETE),
        "is_complete": True,
        "final_status": "approved",
        "metrics": metrics,
        "messages": [AIMessage(content=summary)],
    }


# ============================================================
# Human Verification (Human-in-the-Loop)
# ============================================================


async def human_verification_node(state: PlanningState, config: RunnableConfig) -> dict:
    """
    Pause for sign-off on the stage that just finished.

    The UI receives the payload from interrupt() and resumes the graph with
    Command(resume={"approved": bool, "modifications": {...}}).
    """
    services, ctx = get_services(config), context_from_state(state)
    next_step = state["current_step"]
    approval_step = approval_step_for(next_step)
    stage, output_key = APPROVAL_OUTPUT_KEYS.get(approval_step, (None, None))

    await notify(config, "system", f"Waiting for approval of the {stage or 'current'} stage")

    # ---- INTERRUPT: graph stops here until the user decides ----
    decision = interrupt({
        "plan_id": ctx.plan_id,
        "plan_date": ctx.plan_date,
        "approval_step": approval_step,
        "stage": stage,
        "next_step": next_step,
        "output": state.get(output_key) if output_key else None,
    })

    # ---- RESUMED ----
    if not isinstance(decision, dict):
        decision = {"approved": bool(decision)}
    logger.info(f"Plan {ctx.plan_id} {approval_step}: approved={decision.get('approved')}")

    try:
        approved = await apply_approval_decision(services, ctx, approval_step, decision)
    except StageFailure as failure:
        return {**_failed(WorkflowStep.HUMAN_VERIFICATION, failure), "awaiting_human_approval": False}

    if approved:
        target = transition(WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.APPROVED, next_step)
        return {
            "awaiting_human_approval": False,
            "approval_step": approval_step,
            "current_step": target.value,
            "transitions": [record(WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.APPROVED, target)],
            "messages": [AIMessage(content=f"{stage.title() if stage else 'Stage'} approved, continuing.")],
        }

    target = transition(WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.REJECTED)
    return {
        "awaiting_human_approval": False,
        "approval_step": approval_step,
        "current_step": target.value,
        "is_complete": True,
        "final_status": "cancelled",
        "transitions": [record(WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.REJECTED, target)],
        "messages": [AIMessage(content="Plan rejected and cancelled.")],
    }


# ============================================================
# Error Handler
# ============================================================


async def error_handler_node(state: PlanningState, config: RunnableConfig) -> dict:
    """Restart from dispatch while attempts remain, otherwise end the run as failed."""
    services, ctx = get_services(config), context_from_state(state)
    error_state = state["error"]

    result = await handle_workflow_error(
        services, ctx, error_state, state.get("retry_count", 0), state.get("max_retries", 3)
    )

    if result["retry"]:
        target = transition(WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRY)
        await notify(
            config, "system",
            f"{error_state['failed_step']} failed, retrying ({result['retry_count']}/{state.get('max_retries', 3)})",
        )
        return {
            "error": None,
            "retry_count": result["retry_count"],
            "current_step": target.value,
            "awaiting_human_approval": False,
            "dispatch_output": None,
            "route_output": None,
            "inventory_output": None,
            "created_job_ids": [],
            "transitions": [record(WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRY, target)],
        }

    target = transition(WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRIES_EXHAUSTED)
    message = (
        f"Planning failed after {result['retry_count']} attempts: "
        f"{result['error_state']['error_message']}"
    )
    await notify(config, "system", message)
    return {
        "error": None,
        "last_error": result["error_state"],
        "retry_count": result["retry_count"],
        "current_step": target.value,
        "is_complete": True,
        "final_status": "error",
        "transitions": [record(WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRIES_EXHAUSTED, target)],
        "messages": [AIMessage(content=message)],
    }
