"""
Job Records
===========
CRUD over job_locations rows, always scoped by user.
Jobs are created by the user or by the inventory stage (hardware store runs)
and are never deleted by the planning workflow.
"""

import logging
from typing import Optional

from psycopg.types.json import Jsonb

from services.database import plain_row

logger = logging.getLogger(__name__)

JOB_TYPES = ("delivery", "pickup", "service", "inspection", "maintenance", "emergency")
JOB_PRIORITIES = ("low", "medium", "high", "urgent")
JOB_STATUSES = ("pending", "scheduled", "in_progress", "completed", "cancelled")

JOB_COLUMNS = (
    "title", "description", "job_type", "priority", "status",
    "latitude", "longitude", "address", "scheduled_date", "scheduled_time",
    "estimated_duration", "customer_id", "customer_name", "customer_phone",
    "instructions", "required_items",
)


class JobService:
    """Job record access for one database."""

    def __init__(self, db):
        self.db = db

    async def get_job(self, user_id: str, job_id: str) -> Optional[dict]:
        row = await self.db.fetch_one(
            "SELECT * FROM job_locations WHERE id = %s AND user_id = %s",
            (job_id, user_id),
        )
        return plain_row(row)

    async def get_jobs_by_ids(self, user_id: str, job_ids: list[str]) -> list[dict]:
        """Rows for the given ids, in the order the ids were given."""
        if not job_ids:
            return []
        rows = await self.db.fetch_all(
            "SELECT * FROM job_locations WHERE user_id = %s AND id::text = ANY(%s)",
            (user_id, list(job_ids)),
        )
        by_id = {str(row["id"]): plain_row(row) for row in rows}
        return [by_id[job_id] for job_id in job_ids if job_id in by_id]

    async def get_jobs_for_date(
        self, user_id: str, scheduled_date: str, include_closed: bool = False
    ) -> list[dict]:
        query = "SELECT * FROM job_locations WHERE user_id = %s AND scheduled_date = %s"
        if not include_closed:
            query += " AND status NOT IN ('completed', 'cancelled')"
        query += " ORDER BY scheduled_time NULLS LAST, created_at"
        rows = await self.db.fetch_all(query, (user_id, scheduled_date))
        return [plain_row(row) for row in rows]

    async def create_job(self, user_id: str, job: dict) -> dict:
        """Insert one job and return the stored row."""
        record = {
            "job_type": "service",
            "priority": "medium",
            "status": "pending",
            "estimated_duration": 60,
            "required_items": [],
            **{k: v for k, v in job.items() if k in JOB_COLUMNS},
        }
        if record["job_type"] not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {record['job_type']}")
        if record["priority"] not in JOB_PRIORITIES:
            raise ValueError(f"Unknown job priority: {record['priority']}")

        columns = ["user_id", *record.keys()]
        values = [user_id] + [
            Jsonb(v) if k == "required_items" else v for k, v in record.items()
        ]
        row = await self.db.execute_returning(
            f"""
            INSERT INTO job_locations ({", ".join(columns)})
            VALUES ({", ".join(["%s"] * len(columns))})
            RETURNING *
            """,
            tuple(values),
        )
        created = plain_row(row)
        logger.info(f"Created job {created['id']} ({record['job_type']}): {record.get('title')}")
        return created

    async def create_jobs(self, user_id: str, jobs: list[dict]) -> list[dict]:
        return [await self.create_job(user_id, job) for job in jobs]

    async def update_job_status(self, user_id: str, job_id: str, status: str) -> Optional[dict]:
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status}")
        row = await self.db.execute_returning(
            """
            UPDATE job_locations SET status = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING *
            """,
            (status, job_id, user_id),
        )
        return plain_row(row)

    async def delete_job(self, user_id: str, job_id: str) -> bool:
        count = await self.db.execute(
            "DELETE FROM job_locations WHERE id = %s AND user_id = %s",
            (job_id, user_id),
        )
        return count > 0
