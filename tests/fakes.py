from __future__ import annotations

import copy
import json
import uuid
from enum import Enum

from config.settings import DEFAULT_PREFERENCES
from services.errors import utc_now_iso
from services.plans import PlanStatus, PlanStep
from services.preferences import merge_preferences

USER_ID = "user-1"
PLAN_DATE = "2026-10-20"


def sample_jobs() -> list[dict]:
    return [
        {
            "id": "job-a",
            "title": "Annual inspection",
            "description": "Yearly walkthrough of the building",
            "job_type": "inspection",
            "priority": "low",
            "latitude": 37.7858,
            "longitude": -122.4064,
            "address": "1 Market St, San Francisco, CA",
            "estimated_duration": 45,
            "customer_id": "cust-1",
            "required_items": [],
        },
        {
            "id": "job-b",
            "title": "Plumbing repair at Smith residence",
            "description": "Kitchen sink drips under the basin",
            "job_type": "service",
            "priority": "urgent",
            "latitude": 37.7599,
            "longitude": -122.4148,
            "address": "500 Valencia St, San Francisco, CA",
            "estimated_duration": 90,
            "customer_id": "cust-2",
            "required_items": [],
        },
        {
            "id": "job-c",
            "title": "Filter change",
            "description": "Swap the HVAC filter",
            "job_type": "maintenance",
            "priority": "medium",
            "latitude": 37.7694,
            "longitude": -122.4862,
            "address": "900 Great Hwy, San Francisco, CA",
            "estimated_duration": 30,
            "customer_id": "cust-3",
            "required_items": [{"name": "Air Filter", "quantity": 2}],
        },
    ]


def sample_inventory() -> list[dict]:
    return [
        {"id": "inv-1", "name": "Air Filter", "quantity": 10, "unit": "each", "category": "hvac", "cost_per_unit": 12.0},
        {"id": "inv-2", "name": "Wire Nuts", "quantity": 0, "unit": "box", "category": "electrical", "cost_per_unit": 9.5},
        {"id": "inv-3", "name": "Electrical Tape", "quantity": 3, "unit": "roll", "category": "electrical", "cost_per_unit": 4.0},
    ]


def llm_reply(job_ids: list[str], **extra) -> str:
    payload = {
        "prioritized_jobs": [
            {"job_id": job_id, "priority_rank": rank, "priority_reason": "test order", "job_type": "maintenance"}
            for rank, job_id in enumerate(job_ids, 1)
        ],
        "recommendations": ["Start early"],
        "agent_reasoning": "Urgent plumbing first",
        **extra,
    }
    return json.dumps(payload)


# ============================================================
# In-memory fakes
# ============================================================


def _plain(value):
    return value.value if isinstance(value, Enum) else value


class FakeLLM:
    def __init__(self, content: str | None = None, error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def chat(self, messages, model=None, temperature=None, max_tokens=None, stream=False, response_format=None):
        self.calls.append({"messages": messages, "model": model, "response_format": response_format})
        if self.error is not None:
            raise self.error
        return {"content": self.content, "role": "assistant", "usage": {}}


class FakePlanService:
    """Dict-backed plan store. fail_updates maps a field name to how many updates touching it should fail."""

    def __init__(self, fail_updates: dict | None = None):
        self.plans: dict[str, dict] = {}
        self.fail_updates = dict(fail_updates or {})
        self.history: list[dict] = []

    async def create_plan(self, user_id, planned_date, job_ids, preferences_snapshot=None):
        plan_id = str(uuid.uuid4())
        self.plans[plan_id] = {
            "id": plan_id,
            "user_id": user_id,
            "status": PlanStatus.PENDING.value,
            "current_step": PlanStep.DISPATCH.value,
            "planned_date": planned_date,
            "job_ids": list(job_ids),
            "created_job_ids": [],
            "preferences_snapshot": preferences_snapshot or {},
            "user_modifications": None,
            "error_state": None,
            "retry_count": 0,
            "started_at": utc_now_iso(),
            "completed_at": None,
        }
        return dict(self.plans[plan_id])

    async def get_plan(self, plan_id):
        plan = self.plans.get(plan_id)
        return copy.deepcopy(plan) if plan else None

    async def update_plan(self, plan_id, **fields):
        for name in fields:
            if self.fail_updates.get(name, 0) > 0:
                self.fail_updates[name] -= 1
                raise RuntimeError(f"database unavailable while writing {name}")
        if plan_id not in self.plans:
            raise LookupError(f"Daily plan {plan_id} not found")
        values = {name: copy.deepcopy(_plain(value)) for name, value in fields.items()}
        self.plans[plan_id].update(values)
        self.history.append(values)
        return copy.deepcopy(self.plans[plan_id])

    async def mark_error(self, plan_id, error_state, retry_count=None):
        fields = {"status": PlanStatus.ERROR, "error_state": error_state}
        if retry_count is not None:
            fields["retry_count"] = retry_count
        return await self.update_plan(plan_id, **fields)

    async def cancel_plan(self, plan_id):
        return await self.update_plan(plan_id, status=PlanStatus.CANCELLED, completed_at=utc_now_iso())

    async def approve_plan(self, plan_id):
        return await self.update_plan(
            plan_id, status=PlanStatus.APPROVED, current_step=PlanStep.COMPLETE, completed_at=utc_now_iso()
        )

    async def save_user_modifications(self, plan_id, modifications):
        merged = {**(self.plans[plan_id].get("user_modifications") or {}), **modifications}
        return await self.update_plan(plan_id, user_modifications=merged)

    async def get_all_jobs_for_plan(self, plan_id):
        plan = self.plans.get(plan_id) or {}
        return list(plan.get("job_ids") or []) + list(plan.get("created_job_ids") or [])


class FakeJobService:
    def __init__(self, jobs: list[dict] | None = None):
        self.jobs: dict[str, dict] = {job["id"]: dict(job) for job in (jobs or [])}
        self.created: list[dict] = []

    async def get_jobs_by_ids(self, user_id, job_ids):
        return [dict(self.jobs[job_id]) for job_id in job_ids if job_id in self.jobs]

    async def create_job(self, user_id, job):
        job_id = f"created-{len(self.created) + 1}"
        stored = {"id": job_id, "user_id": user_id, **job}
        self.jobs[job_id] = stored
        self.created.append(stored)
        return dict(stored)


class FakeInventoryService:
    def __init__(self, items: list[dict] | None = None):
        self.items = [dict(item) for item in (items or [])]

    async def list_items(self, user_id):
        return [dict(item) for item in self.items]


class FakePreferencesService:
    def __init__(self, stored: dict | None = None):
        self.stored = stored or {}

    async def get_user_preferences(self, user_id):
        return merge_preferences(DEFAULT_PREFERENCES, self.stored)


class FailingRouteSolver:
    def __init__(self, message: str = "routing engine offline"):
        self.message = message
        self.calls = 0

    async def solve(self, request):
        self.calls += 1
        raise RuntimeError(self.message)


class FailingCatalog:
    async def check_availability(self, supplier, items, location=None):
        raise ConnectionError("supplier API timed out")


