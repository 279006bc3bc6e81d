"""
Daily Plan Store
================
Persistence for daily_plans rows: one row per (user, date) planning attempt.
The plan row owns every stage output of a run. Each update fires the
daily_plans trigger, which is what services.notifications listens to.
"""

import logging
from enum import Enum
from typing import Any, Optional

from psycopg.types.json import Jsonb

from config.settings import WORKFLOW
from services.database import plain_row
from services.errors import ErrorType, create_error_state, utc_now_iso

logger = logging.getLogger(__name__)


class PlanStatus(str, Enum):
    PENDING = "pending"
    DISPATCH_COMPLETE = "dispatch_complete"
    ROUTE_COMPLETE = "route_complete"
    INVENTORY_COMPLETE = "inventory_complete"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    ERROR = "error"


class PlanStep(str, Enum):
    DISPATCH = "dispatch"
    ROUTE = "route"
    INVENTORY = "inventory"
    HARDWARE_STORE_CREATION = "hardware_store_creation"
    HUMAN_VERIFICATION = "human_verification"
    COMPLETE = "complete"


TERMINAL_STATUSES = (PlanStatus.APPROVED, PlanStatus.CANCELLED, PlanStatus.ERROR)
RUNNING_STATUSES = (
    PlanStatus.PENDING,
    PlanStatus.DISPATCH_COMPLETE,
    PlanStatus.ROUTE_COMPLETE,
    PlanStatus.INVENTORY_COMPLETE,
)

JSON_COLUMNS = {
    "dispatch_output", "route_output", "inventory_output",
    "user_modifications", "preferences_snapshot", "error_state",
}
UPDATABLE_COLUMNS = JSON_COLUMNS | {
    "status", "current_step", "job_ids", "created_job_ids", "retry_count",
    "total_estimated_duration", "total_distance", "started_at", "completed_at",
}


def _db_value(column: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if column in JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value


def build_update_query(plan_id: str, fields: dict) -> tuple[str, tuple]:
    """SET clause for the given columns plus updated_at. Unknown columns are rejected."""
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update plan columns: {', '.join(sorted(unknown))}")
    if not fields:
        raise ValueError("No plan fields to update")

    assignments = [f"{column} = %s" for column in fields]
    assignments.append("updated_at = now()")
    params = tuple(_db_value(column, value) for column, value in fields.items())
    query = f"UPDATE daily_plans SET {', '.join(assignments)} WHERE id = %s RETURNING *"
    return query, params + (plan_id,)


class PlanService:
    """daily_plans access for one database."""

    def __init__(self, db, max_retries: int = WORKFLOW["max_retries"]):
        self.db = db
        self.max_retries = max_retries

    # ---- Create / read ----

    async def create_plan(
        self,
        user_id: str,
        planned_date: str,
        job_ids: list[str],
        preferences_snapshot: Optional[dict] = None,
    ) -> dict:
        row = await self.db.execute_returning(
            """
            INSERT INTO daily_plans
                (user_id, status, current_step, planned_date, job_ids,
                 created_job_ids, preferences_snapshot, retry_count, started_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, 0, now())
            RETURNING *
            """,
            (
                user_id,
                PlanStatus.PENDING.value,
                PlanStep.DISPATCH.value,
                planned_date,
                list(job_ids),
                [],
                Jsonb(preferences_snapshot or {}),
            ),
        )
        plan = plain_row(row)
        logger.info(f"Created daily plan {plan['id']} for user {user_id} on {planned_date}")
        return plan

    async def get_plan(self, plan_id: str) -> Optional[dict]:
        row = await self.db.fetch_one("SELECT * FROM daily_plans WHERE id = %s", (plan_id,))
        return plain_row(row)

    async def get_current_plan(self, user_id: str, planned_date: str) -> Optional[dict]:
        """Most recent plan for the user and date."""
        row = await self.db.fetch_one(
            """
            SELECT * FROM daily_plans
            WHERE user_id = %s AND planned_date = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (user_id, planned_date),
        )
        return plain_row(row)

    async def get_plans_in_range(self, user_id: str, start_date: str, end_date: str) -> list[dict]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM daily_plans
            WHERE user_id = %s AND planned_date BETWEEN %s AND %s
            ORDER BY planned_date, created_at
            """,
            (user_id, start_date, end_date),
        )
        return [plain_row(row) for row in rows]

    # ---- Mutations ----

    async def update_plan(self, plan_id: str, **fields) -> dict:
        query, params = build_update_query(plan_id, fields)
        row = await self.db.execute_returning(query, params)
        if row is None:
            raise LookupError(f"Daily plan {plan_id} not found")
        logger.debug(f"Plan {plan_id} updated: {sorted(fields)}")
        return plain_row(row)

    async def mark_error(
        self, plan_id: str, error_state: dict, retry_count: Optional[int] = None
    ) -> dict:
        fields = {"status": PlanStatus.ERROR, "error_state": error_state}
        if retry_count is not None:
            fields["retry_count"] = retry_count
        logger.warning(
            f"Plan {plan_id} marked error at {error_state.get('failed_step')}: "
            f"{error_state.get('error_message')}"
        )
        return await self.update_plan(plan_id, **fields)

    async def cancel_plan(self, plan_id: str) -> dict:
        return await self.update_plan(
            plan_id, status=PlanStatus.CANCELLED, completed_at=utc_now_iso()
        )

    async def approve_plan(self, plan_id: str) -> dict:
        return await self.update_plan(
            plan_id,
            status=PlanStatus.APPROVED,
            current_step=PlanStep.COMPLETE,
            completed_at=utc_now_iso(),
        )

    async def save_user_modifications(self, plan_id: str, modifications: dict) -> dict:
        plan = await self.get_plan(plan_id)
        if plan is None:
            raise LookupError(f"Daily plan {plan_id} not found")
        merged = {**(plan.get("user_modifications") or {}), **modifications}
        return await self.update_plan(plan_id, user_modifications=merged)

    async def get_all_jobs_for_plan(self, plan_id: str) -> list[str]:
        """Original job ids followed by ids created during the run."""
        plan = await self.get_plan(plan_id)
        if plan is None:
            return []
        return list(plan.get("job_ids") or []) + list(plan.get("created_job_ids") or [])

    # ---- Maintenance ----

    async def cleanup_stale_plans(
        self, max_age_minutes: int = WORKFLOW["stale_plan_minutes"]
    ) -> list[dict]:
        """Time out plans that have been running longer than max_age_minutes."""
        error_state = create_error_state(
            "dispatch",
            f"Plan execution timed out after {max_age_minutes} minutes",
            retry_suggested=True,
            error_type=ErrorType.TIMEOUT,
            diagnostic_info={"reason": "stale_plan_cleanup"},
        )
        rows = await self.db.execute_returning_all(
            """
            UPDATE daily_plans
               SET status = %s,
                   error_state = jsonb_set(%s, '{failed_step}', to_jsonb(current_step)),
                   updated_at = now()
             WHERE status = ANY(%s)
               AND COALESCE(started_at, created_at) < now() - make_interval(mins => %s)
            RETURNING *
            """,
            (
                PlanStatus.ERROR.value,
                Jsonb(error_state),
                [status.value for status in RUNNING_STATUSES],
                max_age_minutes,
            ),
        )
        if rows:
            logger.warning(f"Timed out {len(rows)} stale plan(s)")
        return [plain_row(row) for row in rows]

    async def get_retryable_plans(self, user_id: str) -> list[dict]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM daily_plans
            WHERE user_id = %s
              AND status = %s
              AND (error_state ->> 'retry_suggested')::boolean IS TRUE
              AND retry_count < %s
            ORDER BY updated_at DESC
            """,
            (user_id, PlanStatus.ERROR.value, self.max_retries),
        )
        return [plain_row(row) for row in rows]
