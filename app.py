"""
Daily Field Service Planner - Chainlit Entry Point
==================================================
Main application file that bridges the LangGraph planning workflow with the Chainlit UI.
Handles:
- Chat session initialization (database, schema, stale-plan cleanup, graph)
- `plan YYYY-MM-DD` and `retry` commands
- Streaming stage summaries per specialist
- Human approval interrupts and resume
- Plan change notifications from Postgres
"""

import logging
import re
import uuid
from datetime import date

import chainlit as cl

from agents.context import build_services
from config.settings import AGENTS, UI, WORKFLOW, get_database_url
from graph.builder import compile_postgres_graph
from graph.workflow import execute_daily_planning_workflow, resume_daily_planning
from services.database import DatabaseService
from services.notifications import start_plan_subscription, stop_plan_subscription
from ui.cards import ask_approval, display_approval_card, display_error, display_plan_summary
from ui.streaming import StreamManager, create_agent_callback

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLAN_COMMAND = re.compile(r"^\s*plan(?:\s+(\d{4}-\d{2}-\d{2}))?\s*$", re.IGNORECASE)
RETRY_COMMAND = re.compile(r"^\s*retry\s*$", re.IGNORECASE)


# ============================================================
# Chat Lifecycle Hooks
# ============================================================


@cl.on_chat_start
async def on_chat_start():
    """Initialize a new chat session."""
    logger.info("New chat session starting...")

    db = DatabaseService()
    await db.initialize()
    await db.apply_schema()

    services = build_services(db)
    stale = await services.plans.cleanup_stale_plans()
    if stale:
        logger.info(f"Timed out {len(stale)} stale plan(s) at session start")

    graph, checkpoint_pool = await compile_postgres_graph(get_database_url())

    cl.user_session.set("db", db)
    cl.user_session.set("services", services)
    cl.user_session.set("graph", graph)
    cl.user_session.set("checkpoint_pool", checkpoint_pool)
    cl.user_session.set("stream_manager", StreamManager())
    cl.user_session.set("user_id", WORKFLOW["default_user_id"])

    await cl.Message(content=UI["welcome_message"], author=AGENTS["system"]["name"]).send()


@cl.on_chat_end
async def on_chat_end():
    """Close the session's pools."""
    logger.info("Chat session ending...")
    checkpoint_pool = cl.user_session.get("checkpoint_pool")
    if checkpoint_pool is not None:
        await checkpoint_pool.close()
    db = cl.user_session.get("db")
    if db is not None:
        await db.close()


# ============================================================
# Message Handler
# ============================================================


@cl.on_message
async def on_message(message: cl.Message):
    """Handle incoming user messages."""
    services = cl.user_session.get("services")
    graph = cl.user_session.get("graph")
    stream_manager: StreamManager = cl.user_session.get("stream_manager")
    user_id = cl.user_session.get("user_id")

    if not graph or not services:
        await cl.Message(
            content="Session not initialized. Please refresh the page.",
            author=AGENTS["system"]["name"],
        ).send()
        return
    if not user_id:
        await cl.Message(
            content="Set `PLANNER_USER_ID` to the profile you want to plan for.",
            author=AGENTS["system"]["name"],
        ).send()
        return

    try:
        plan_match = PLAN_COMMAND.match(message.content)
        if plan_match:
            await _plan_day(services, graph, stream_manager, user_id, plan_match.group(1) or date.today().isoformat())
        elif RETRY_COMMAND.match(message.content):
            await _retry_latest(services, graph, stream_manager, user_id)
        else:
            await stream_manager.send_message(
                "I understand `plan YYYY-MM-DD` and `retry`.", "system"
            )
    except ValueError as e:
        await stream_manager.finalize()
        await stream_manager.send_message(f"Cannot plan: {e}", "system")
    except Exception as e:
        logger.error(f"Error processing message: {e}", exc_info=True)
        await stream_manager.finalize()
        await cl.Message(
            content=f"An error occurred while planning. Please try again.\n\n*Error: {str(e)}*",
            author=AGENTS["system"]["name"],
        ).send()


# ============================================================
# Planning Flow
# ============================================================


async def _plan_day(services, graph, stream_manager: StreamManager, user_id: str, plan_date: str):
    jobs = await services.jobs.get_jobs_for_date(user_id, plan_date)
    if not jobs:
        await stream_manager.send_message(f"No open jobs scheduled for {plan_date}.", "system")
        return
    await _run_plan(services, graph, stream_manager, user_id, [str(job["id"]) for job in jobs], plan_date)


async def _retry_latest(services, graph, stream_manager: StreamManager, user_id: str):
    retryable = await services.plans.get_retryable_plans(user_id)
    if not retryable:
        await stream_manager.send_message("There is no failed plan to retry.", "system")
        return
    plan = retryable[0]
    await stream_manager.send_message(f"Retrying the plan for {plan['planned_date']}.", "system")
    await _run_plan(services, graph, stream_manager, user_id, list(plan["job_ids"]), str(plan["planned_date"]))


async def _run_plan(services, graph, stream_manager, user_id, job_ids, plan_date):
    last_status = {}

    async def on_plan_change(change: dict) -> None:
        plan_id, status = change.get("id"), change.get("status")
        if last_status.get(plan_id) == status:
            return
        last_status[plan_id] = status
        line = f"Plan status: {status}"
        if change.get("current_step"):
            line += f" (next: {change['current_step']})"
        if change.get("retry_count"):
            line += f", attempt {int(change['retry_count']) + 1}"
        await stream_manager.stream_line(line, "system")

    subscription = await start_plan_subscription(user_id, plan_date, on_plan_change)
    try:
        result = await execute_daily_planning_workflow(
            services,
            user_id,
            job_ids,
            plan_date,
            graph=graph,
            thread_id=str(uuid.uuid4()),
            agent_callback=create_agent_callback(stream_manager),
        )
        await _follow_approvals(services, graph, stream_manager, result)
    finally:
        await stop_plan_subscription(subscription)


# ============================================================
# Human Approval
# ============================================================


async def _follow_approvals(services, graph, stream_manager: StreamManager, result: dict):
    """Ask for sign-off on each paused stage until the run finishes."""
    while result.get("pending_approval") is not None:
        await stream_manager.finalize()
        await display_approval_card(result["pending_approval"])
        approved = await ask_approval()
        result = await resume_daily_planning(
            services,
            graph,
            result["thread_id"],
            approved,
            agent_callback=create_agent_callback(stream_manager),
        )

    await stream_manager.finalize()
    if result.get("final_status") == "error" and result.get("last_error"):
        await display_error(result["last_error"])
    await display_plan_summary(result)
