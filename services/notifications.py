"""
Plan Change Notifications
=========================
Real-time subscription to daily_plans changes over Postgres LISTEN/NOTIFY.
The daily_plans trigger (services/schema.sql) publishes a small JSON payload
on every insert and update; subscribers only see payloads for their user
and date.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

import psycopg
from psycopg import sql

from config.settings import WORKFLOW, get_database_url

logger = logging.getLogger(__name__)

PlanChangeCallback = Callable[[dict], Awaitable[None]]


def parse_plan_notification(raw: str) -> Optional[dict]:
    """Decode a NOTIFY payload. Returns None for payloads that are not JSON objects."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring non-JSON plan notification: {raw[:120]}")
        return None
    return payload if isinstance(payload, dict) else None


def plan_change_matches(payload: dict, user_id: str, planned_date: str) -> bool:
    return (
        str(payload.get("user_id")) == str(user_id)
        and str(payload.get("planned_date"))[:10] == str(planned_date)[:10]
    )


class PlanChangeListener:
    """Owns one autocommit connection that LISTENs on the plan channel."""

    def __init__(self, dsn: Optional[str] = None, channel: str = WORKFLOW["notify_channel"]):
        self.dsn = dsn or get_database_url()
        self.channel = channel
        self.ready = asyncio.Event()

    async def listen(self, user_id: str, planned_date: str, callback: PlanChangeCallback) -> None:
        """Deliver matching changes to callback until the task is cancelled."""
        async with await psycopg.AsyncConnection.connect(self.dsn, autocommit=True) as conn:
            await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
            self.ready.set()
            logger.info(f"Subscribed to {self.channel} for user {user_id} on {planned_date}")
            async for notify in conn.notifies():
                payload = parse_plan_notification(notify.payload)
                if payload and plan_change_matches(payload, user_id, planned_date):
                    await callback(payload)


def subscribe_to_daily_plan(
    user_id: str,
    planned_date: str,
    callback: PlanChangeCallback,
    listener: Optional[PlanChangeListener] = None,
) -> asyncio.Task:
    """Start listening in the background. Cancel the returned task to unsubscribe."""
    listener = listener or PlanChangeListener()
    return asyncio.create_task(
        listener.listen(user_id, planned_date, callback),
        name=f"plan-changes-{user_id}-{planned_date}",
    )


async def start_plan_subscription(
    user_id: str,
    planned_date: str,
    callback: PlanChangeCallback,
    listener: Optional[PlanChangeListener] = None,
    timeout: float = WORKFLOW["subscribe_timeout_seconds"],
) -> asyncio.Task:
    """
    Subscribe and wait until LISTEN is active, so the first plan updates are
    not missed. A listener that fails to start is reported and its task returned
    already finished; planning goes ahead without live updates.
    """
    listener = listener or PlanChangeListener()
    task = subscribe_to_daily_plan(user_id, planned_date, callback, listener)
    ready = asyncio.create_task(listener.ready.wait())
    await asyncio.wait({task, ready}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    if not ready.done():
        ready.cancel()
        logger.warning(f"Plan change subscription for {planned_date} is not active yet")
    if task.done() and not task.cancelled() and task.exception() is not None:
        logger.warning(f"Plan change subscription failed to start: {task.exception()}")
    return task


async def stop_plan_subscription(task: asyncio.Task) -> None:
    """Cancel the listener task and collect its outcome."""
    if not task.done():
        task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.warning(f"Plan change subscription ended with an error: {exc}", exc_info=exc)
