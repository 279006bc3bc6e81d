from __future__ import annotations

import asyncio
import json

import pytest

from fakes import (
    PLAN_DATE,
    USER_ID,
    FailingRouteSolver,
    FakeInventoryService,
    FakeJobService,
    FakeLLM,
    FakePlanService,
)
from graph.builder import compile_graph
from graph.workflow import execute_daily_planning_workflow, resume_daily_planning

JOB_IDS = ["job-a", "job-b", "job-c"]


def _events(result: dict) -> list[tuple[str, str, str]]:
    return [(t["source"], t["event"], t["target"]) for t in result["transitions"]]


def _only_plan(services) -> dict:
    assert len(services.plans.plans) == 1
    return next(iter(services.plans.plans.values()))


def test_full_day_is_planned_and_approved(make_services) -> None:
    services = make_services()

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert result["final_status"] == "approved"
    assert result["is_complete"] is True
    assert result["pending_approval"] is None
    assert result["error"] is None

    dispatch = result["dispatch_output"]
    assert dispatch["fallback_used"] is False
    assert [e["job_id"] for e in dispatch["prioritized_jobs"]] == ["job-b", "job-c", "job-a"]

    waypoints = result["route_output"]["optimized_route"]["waypoints"]
    assert [w["job_id"] for w in waypoints] == ["job-b", "job-c", "job-a"]
    assert [w["sequence"] for w in waypoints] == [1, 2, 3]

    inventory = result["inventory_output"]
    assert {item["item_name"] for item in inventory["shopping_list"]} == {"Pipe Fitting", "Pipe Sealant", "Teflon Tape"}
    assert all(item["priority"] == "high" for item in inventory["shopping_list"])
    assert {a["item_name"]: a["alert_type"] for a in inventory["inventory_alerts"]} == {
        "Wire Nuts": "out_of_stock",
        "Electrical Tape": "low_stock",
    }

    # home_depot has two stores within range of the search point
    assert len(result["created_job_ids"]) == 2
    assert all(job["job_type"] == "pickup" for job in services.jobs.created)
    assert services.jobs.created[0]["title"].startswith("Hardware Store Run - ")

    metrics = result["metrics"]
    assert metrics["total_jobs"] == 5
    assert metrics["original_jobs"] == 3
    assert metrics["hardware_store_jobs"] == 2
    assert metrics["shopping_items"] == 3
    assert metrics["alerts"] == 2
    assert metrics["retry_count"] == 0

    plan = _only_plan(services)
    assert plan["status"] == "approved"
    assert plan["created_job_ids"] == result["created_job_ids"]
    assert plan["completed_at"] is not None

    assert _events(result) == [
        ("dispatch", "completed", "route"),
        ("route", "completed", "inventory"),
        ("inventory", "store_run_planned", "hardware_store_creation"),
        ("hardware_store_creation", "completed", "complete"),
        ("complete", "completed", "__end__"),
    ]


def test_unusable_llm_reply_falls_back_to_priority_order(make_services) -> None:
    services = make_services(llm=FakeLLM("I could not decide, sorry."))

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    dispatch = result["dispatch_output"]
    assert result["final_status"] == "approved"
    assert dispatch["fallback_used"] is True
    assert [e["job_id"] for e in dispatch["prioritized_jobs"]] == ["job-b", "job-c", "job-a"]
    assert dispatch["agent_reasoning"] == "Applied basic priority sorting by job urgency and type"


def test_three_failures_end_the_run(make_services) -> None:
    solver = FailingRouteSolver()
    services = make_services(route_solver=solver)

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert solver.calls == 3
    assert result["final_status"] == "error"
    assert result["is_complete"] is True
    assert result["retry_count"] == 3
    assert result["last_error"]["failed_step"] == "route"
    assert result["last_error"]["retry_suggested"] is False

    plan = _only_plan(services)
    assert plan["status"] == "error"
    assert plan["retry_count"] == 3
    assert plan["error_state"]["error_type"] == "external_api_error"
    assert plan["error_state"]["retry_suggested"] is False

    events = [event for _, event, _ in _events(result)]
    assert events.count("retry") == 2
    assert events.count("retries_exhausted") == 1
    assert events.count("failed") == 3


def test_retry_restarts_from_dispatch_and_duplicates_store_jobs(make_services) -> None:
    # The first write of created_job_ids fails after both pickup jobs exist
    services = make_services(plans=FakePlanService(fail_updates={"created_job_ids": 1}))

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert result["final_status"] == "approved"
    assert result["retry_count"] == 1
    assert result["metrics"]["retry_count"] == 1
    assert len(services.llm.calls) == 2

    # Jobs created before the failure are not cleaned up or reused
    assert len(services.jobs.created) == 4
    assert len(result["created_job_ids"]) == 2
    assert result["created_job_ids"] == [job["id"] for job in services.jobs.created[2:]]

    plan = _only_plan(services)
    assert plan["status"] == "approved"
    assert plan["retry_count"] == 1
    assert plan["error_state"] is None
    assert plan["created_job_ids"] == result["created_job_ids"]

    assert ("error_handler", "retry", "dispatch") in _events(result)


def test_approval_pauses_then_resumes_with_modifications(make_services) -> None:
    services = make_services()
    graph = compile_graph()

    async def run() -> tuple[dict, dict]:
        paused = await execute_daily_planning_workflow(
            services, USER_ID, JOB_IDS, PLAN_DATE,
            preference_overrides={"approval_checkpoints": ["dispatch"]},
            graph=graph,
        )
        finished = await resume_daily_planning(
            services, graph, paused["thread_id"], approved=True,
            modifications={"note": "customer B asked for a call ahead"},
        )
        return paused, finished

    paused, finished = asyncio.run(run())

    assert paused["is_complete"] is False
    assert paused["awaiting_human_approval"] is True
    assert paused["route_output"] is None
    pending = paused["pending_approval"]
    assert pending["approval_step"] == "dispatch_approval"
    assert pending["stage"] == "dispatch"
    assert pending["output"]["prioritized_jobs"][0]["job_id"] == "job-b"

    assert finished["pending_approval"] is None
    assert finished["final_status"] == "approved"
    assert finished["awaiting_human_approval"] is False
    assert finished["approval_step"] == "dispatch_approval"
    assert ("human_verification", "approved", "route") in _events(finished)

    plan = _only_plan(services)
    assert plan["status"] == "approved"
    assert plan["user_modifications"] == {"dispatch_approval": {"note": "customer B asked for a call ahead"}}


def test_rejection_cancels_the_plan(make_services) -> None:
    services = make_services()
    graph = compile_graph()

    async def run() -> dict:
        paused = await execute_daily_planning_workflow(
            services, USER_ID, JOB_IDS, PLAN_DATE,
            preference_overrides={"approval_checkpoints": ["route"]},
            graph=graph,
        )
        assert paused["pending_approval"]["approval_step"] == "route_approval"
        return await resume_daily_planning(services, graph, paused["thread_id"], approved=False)

    result = asyncio.run(run())

    assert result["final_status"] == "cancelled"
    assert result["is_complete"] is True
    assert result["inventory_output"] is None
    assert services.jobs.created == []
    assert _only_plan(services)["status"] == "cancelled"
    assert ("human_verification", "rejected", "__end__") in _events(result)


def test_status_callback_receives_stage_summaries(make_services) -> None:
    services = make_services()
    seen: list[tuple[str, str]] = []

    async def callback(agent_key: str, text: str) -> None:
        seen.append((agent_key, text))

    asyncio.run(execute_daily_planning_workflow(
        services, USER_ID, JOB_IDS, PLAN_DATE, agent_callback=callback
    ))

    agents = {agent for agent, _ in seen}
    assert {"dispatcher", "router", "inventory", "system"} <= agents


@pytest.mark.parametrize(
    "user_id, job_ids, plan_date, overrides",
    [
        ("", JOB_IDS, PLAN_DATE, None),
        (USER_ID, [], PLAN_DATE, None),
        (USER_ID, JOB_IDS, "20/10/2026", None),
        (USER_ID, JOB_IDS, PLAN_DATE, {"work_start_time": "18:00"}),
        (USER_ID, JOB_IDS, PLAN_DATE, {"approval_checkpoints": ["lunch"]}),
    ],
)
def test_invalid_requests_are_rejected_before_a_plan_exists(make_services, user_id, job_ids, plan_date, overrides) -> None:
    services = make_services()

    with pytest.raises(ValueError):
        asyncio.run(execute_daily_planning_workflow(
            services, user_id, job_ids, plan_date, preference_overrides=overrides
        ))

    assert services.plans.plans == {}


def test_failure_after_store_jobs_keeps_only_the_last_attempts_ids(make_services) -> None:
    # Approval fails once, after the first attempt already recorded its pickup jobs
    services = make_services(plans=FakePlanService(fail_updates={"completed_at": 1}))

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert result["final_status"] == "approved"
    assert result["retry_count"] == 1
    assert ("complete", "failed", "error_handler") in _events(result)

    assert len(services.jobs.created) == 4
    last_attempt = [job["id"] for job in services.jobs.created[2:]]
    assert result["created_job_ids"] == last_attempt

    metrics = result["metrics"]
    assert metrics["total_jobs"] == 5
    assert metrics["hardware_store_jobs"] == 2

    plan = _only_plan(services)
    assert plan["status"] == "approved"
    assert plan["created_job_ids"] == last_attempt
    assert plan["error_state"] is None


def test_clock_times_in_the_llm_reply_do_not_break_routing(make_services) -> None:
    reply = json.dumps({
        "prioritized_jobs": [
            {"job_id": "job-b", "priority_rank": 1, "estimated_start_time": "08:00", "estimated_end_time": "09:30"},
            {"job_id": "job-c", "priority_rank": 2, "estimated_start_time": "10:00", "estimated_end_time": "10:30"},
            {"job_id": "job-a", "priority_rank": 3, "estimated_start_time": "11:00", "estimated_end_time": "11:45"},
        ],
    })
    services = make_services(llm=FakeLLM(reply))

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert result["final_status"] == "approved"
    assert result["retry_count"] == 0
    assert len(services.llm.calls) == 1
    assert result["dispatch_output"]["fallback_used"] is False
    assert result["dispatch_output"]["prioritized_jobs"][0]["estimated_start_time"] == f"{PLAN_DATE}T08:00:00"
    waypoints = result["route_output"]["optimized_route"]["waypoints"]
    assert [w["job_id"] for w in waypoints] == ["job-b", "job-c", "job-a"]
    assert all(w["arrival_time"].startswith(PLAN_DATE) for w in waypoints)


def _field_day_jobs() -> list[dict]:
    def job(job_id, title, job_type, priority, lat, lon, items):
        return {
            "id": job_id, "title": title, "description": "", "job_type": job_type, "priority": priority,
            "latitude": lat, "longitude": lon, "address": f"{job_id} address, San Francisco, CA",
            "estimated_duration": 60, "required_items": items,
        }

    return [
        job("svc-low", "Replace outlet cover", "service", "low", 37.7858, -122.4064,
            [{"name": "Outlet", "quantity": 2}, {"name": "Wire Nuts", "quantity": 1}]),
        job("inspect-high", "Pre-sale inspection", "inspection", "high", 37.7599, -122.4148, []),
        job("svc-medium", "Replace thermostat", "service", "medium", 37.7694, -122.4862,
            [{"name": "Thermostat", "quantity": 1}, {"name": "Wire Nuts", "quantity": 1}]),
        job("emergency-urgent", "Burst pipe under sink", "emergency", "urgent", 37.7793, -122.4193,
            [{"name": "Pipe Fitting", "quantity": 2}, {"name": "Pipe Sealant", "quantity": 1}]),
    ]


def test_four_job_day_with_an_empty_van(make_services) -> None:
    jobs = _field_day_jobs()
    empty_van = [
        {"id": f"inv-{n}", "name": name, "quantity": 0, "unit": "each", "category": "general"}
        for n, name in enumerate(["Outlet", "Wire Nuts", "Thermostat", "Pipe Fitting", "Pipe Sealant"])
    ]
    services = make_services(
        llm=FakeLLM("Not sure, here is my best guess without JSON."),
        jobs=FakeJobService(jobs),
        inventory=FakeInventoryService(empty_van),
    )

    result = asyncio.run(execute_daily_planning_workflow(
        services, USER_ID, [job["id"] for job in jobs], PLAN_DATE
    ))

    assert result["final_status"] == "approved"

    prioritized = result["dispatch_output"]["prioritized_jobs"]
    assert prioritized[0]["job_id"] == "emergency-urgent"
    assert prioritized[0]["job_type"] == "emergency"
    assert [e["job_id"] for e in prioritized] == ["emergency-urgent", "inspect-high", "svc-medium", "svc-low"]

    shopping = {entry["item_name"]: entry for entry in result["inventory_output"]["shopping_list"]}
    assert set(shopping) == {"Outlet", "Wire Nuts", "Thermostat", "Pipe Fitting", "Pipe Sealant"}
    assert shopping["Wire Nuts"]["quantity_needed"] == 2
    assert shopping["Pipe Fitting"]["priority"] == "high"

    created_ids = result["created_job_ids"]
    assert created_ids
    created_by_id = {job["id"]: job for job in services.jobs.created}
    assert set(created_ids) == set(created_by_id)
    assert all(created_by_id[job_id]["job_type"] == "pickup" for job_id in created_ids)

    plan = _only_plan(services)
    assert plan["status"] == "approved"
    assert plan["created_job_ids"] == created_ids


def test_unsaved_error_state_still_reaches_the_error_handler(make_services) -> None:
    solver = FailingRouteSolver()
    services = make_services(route_solver=solver, plans=FakePlanService(fail_updates={"error_state": 1}))

    result = asyncio.run(execute_daily_planning_workflow(services, USER_ID, JOB_IDS, PLAN_DATE))

    assert solver.calls == 3
    assert result["final_status"] == "error"
    assert result["retry_count"] == 3
    assert _only_plan(services)["status"] == "error"


def test_failed_approval_write_restarts_the_run(make_services) -> None:
    services = make_services(plans=FakePlanService(fail_updates={"user_modifications": 1}))
    graph = compile_graph()

    async def run() -> tuple[dict, dict]:
        paused = await execute_daily_planning_workflow(
            services, USER_ID, JOB_IDS, PLAN_DATE,
            preference_overrides={"approval_checkpoints": ["dispatch"]},
            graph=graph,
        )
        again = await resume_daily_planning(
            services, graph, paused["thread_id"], approved=True, modifications={"note": "first try"},
        )
        finished = await resume_daily_planning(
            services, graph, again["thread_id"], approved=True, modifications={"note": "second try"},
        )
        return again, finished

    again, finished = asyncio.run(run())

    assert again["retry_count"] == 1
    assert again["pending_approval"]["approval_step"] == "dispatch_approval"
    assert ("human_verification", "failed", "error_handler") in _events(again)

    assert finished["final_status"] == "approved"
    plan = _only_plan(services)
    assert plan["user_modifications"] == {"dispatch_approval": {"note": "second try"}}
