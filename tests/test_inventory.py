from __future__ import annotations

import asyncio

import pytest

from agents.context import PlanContext
from agents.dispatcher import build_fallback_output
from agents.inventory import (
    build_parts_manifest,
    build_store_run_job,
    create_hardware_store_jobs,
    find_inventory_item,
    generate_inventory_alerts,
    generate_shopping_list,
    plan_hardware_store_run,
    resolve_required_parts,
    run_inventory,
)
from config.settings import DEFAULT_PREFERENCES, SUPPLIER
from fakes import PLAN_DATE, USER_ID, FailingCatalog, FakeInventoryService, sample_inventory, sample_jobs
from services.errors import StageFailure
from tools.supplier import MockSupplierCatalog, supplier_key

PREFS = DEFAULT_PREFERENCES


def test_parts_come_from_required_items_before_templates() -> None:
    explicit = {"job_type": "service", "title": "Plumbing job", "required_items": [{"name": "Ball Valve", "quantity": 2}]}
    templated = {"job_type": "service", "title": "Plumbing repair", "required_items": []}

    assert resolve_required_parts(explicit, PREFS) == [
        {"name": "Ball Valve", "quantity": 2, "unit": None, "category": None, "inventory_item_id": None}
    ]
    assert [p["name"] for p in resolve_required_parts(templated, PREFS)] == ["Pipe Fitting", "Pipe Sealant", "Teflon Tape"]
    assert resolve_required_parts({"job_type": "inspection", "title": "Walkthrough"}, PREFS) == []


def test_inventory_matching_prefers_id_then_exact_then_substring() -> None:
    inventory = sample_inventory()

    assert find_inventory_item({"inventory_item_id": "inv-2", "name": "Air Filter"}, inventory)["id"] == "inv-2"
    assert find_inventory_item({"name": "air filter"}, inventory)["id"] == "inv-1"
    assert find_inventory_item({"name": "Tape"}, inventory)["id"] == "inv-3"
    assert find_inventory_item({"name": "Torque Wrench"}, inventory) is None


def test_shopping_list_aggregates_shortfalls_across_jobs() -> None:
    jobs = [
        {"id": "j1", "priority": "low", "job_type": "service", "required_items": [{"name": "Wire Nuts", "quantity": 2}]},
        {"id": "j2", "priority": "urgent", "job_type": "service", "required_items": [{"name": "Wire Nuts", "quantity": 3}]},
        {"id": "j3", "priority": "low", "job_type": "service", "required_items": [{"name": "Air Filter", "quantity": 4}]},
    ]

    manifest = build_parts_manifest(jobs, sample_inventory(), PREFS)
    shopping = generate_shopping_list(manifest, PREFS)

    assert len(shopping) == 1
    entry = shopping[0]
    assert entry["item_name"] == "Wire Nuts"
    assert entry["quantity_needed"] == 5
    assert entry["job_ids"] == ["j1", "j2"]
    assert entry["priority"] == "high"
    assert entry["preferred_supplier"] == "Grainger"
    assert entry["estimated_cost"] == 47.5


def test_unknown_parts_use_the_default_unit_cost_and_primary_supplier() -> None:
    jobs = [{"id": "j1", "priority": "medium", "job_type": "service", "required_items": ["Drain Snake"]}]

    shopping = generate_shopping_list(build_parts_manifest(jobs, [], PREFS), PREFS)

    assert shopping[0]["category"] == "general"
    assert shopping[0]["preferred_supplier"] == "Home Depot"
    assert shopping[0]["estimated_cost"] == SUPPLIER["default_unit_cost"]
    assert shopping[0]["priority"] == "medium"


def test_alerts_follow_the_critical_threshold() -> None:
    inventory = sample_inventory() + [{"id": "inv-9", "name": "Caulk", "quantity": 5, "category": "general"}]

    alerts = {a["item_name"]: a for a in generate_inventory_alerts(inventory, PREFS)}

    assert set(alerts) == {"Wire Nuts", "Electrical Tape", "Caulk"}
    assert alerts["Wire Nuts"]["alert_type"] == "out_of_stock"
    assert alerts["Electrical Tape"]["alert_type"] == "low_stock"
    assert alerts["Caulk"]["current_quantity"] == 5
    assert alerts["Wire Nuts"]["suggested_action"] == "Reorder from Grainger"


def _shopping() -> list[dict]:
    jobs = [{"id": "j1", "priority": "medium", "title": "Plumbing repair", "job_type": "service", "required_items": []}]
    return generate_shopping_list(build_parts_manifest(jobs, [], PREFS), PREFS)


def test_store_run_uses_nearby_supplier_stores() -> None:
    shopping = _shopping()

    run = asyncio.run(plan_hardware_store_run(MockSupplierCatalog(seed=3), shopping, PREFS))

    assert run["source"] == "supplier_api"
    assert run["supplier"] == "home_depot"
    # Nearest first from the search point
    assert [s["store_name"] for s in run["store_locations"]] == ["The Home Depot #4518", "The Home Depot #4512"]
    assert run["store_locations"][0]["address"] == "2525 Bayshore Blvd, San Francisco, CA 94134"
    # Three items or fewer stay at the minimum visit length
    assert [s["estimated_visit_time"] for s in run["store_locations"]] == [20, 20]
    assert run["total_shopping_time"] == 40


def test_catalog_failure_falls_back_to_one_store() -> None:
    shopping = _shopping()

    run = asyncio.run(plan_hardware_store_run(FailingCatalog(), shopping, PREFS))

    assert run["source"] == "fallback"
    (store,) = run["store_locations"]
    assert store["store_name"] == "Home Depot"
    assert store["estimated_visit_time"] == 30
    assert store["items_available"] == [entry["item_name"] for entry in shopping]
    assert run["total_estimated_cost"] == round(sum(e["estimated_cost"] for e in shopping), 2)
    assert "timed out" in run["fallback_reason"]


def test_unsupported_supplier_falls_back() -> None:
    prefs = {**PREFS, "primary_supplier": "Johnstone Supply"}

    run = asyncio.run(plan_hardware_store_run(MockSupplierCatalog(), _shopping(), prefs))

    assert run["source"] == "fallback"
    assert run["store_locations"][0]["store_name"] == "Johnstone Supply"


def test_supplier_keys() -> None:
    assert supplier_key("Home Depot") == "home_depot"
    assert supplier_key("Lowe's") == "lowes"


def test_store_run_job_shape() -> None:
    store = {
        "store_name": "Ferguson Plumbing Supply", "address": "2001 Jerrold Ave, San Francisco, CA 94124",
        "latitude": 37.7446, "longitude": -122.3937, "estimated_visit_time": 25,
        "items_available": ["Pipe Fitting", "Pipe Sealant"],
    }

    job = build_store_run_job(store, PLAN_DATE)

    assert job["title"] == "Hardware Store Run - Ferguson Plumbing Supply"
    assert job["description"] == "Pick up parts: Pipe Fitting, Pipe Sealant"
    assert (job["job_type"], job["priority"], job["status"]) == ("pickup", "medium", "pending")
    assert job["estimated_duration"] == 25
    assert job["scheduled_date"] == PLAN_DATE


def test_run_inventory_without_shortfalls_goes_straight_to_complete(make_services) -> None:
    stocked = sample_inventory() + [
        {"id": f"inv-{name}", "name": name, "quantity": 50, "unit": "each", "category": "plumbing"}
        for name in ("Pipe Fitting", "Pipe Sealant", "Teflon Tape")
    ]
    services = make_services(inventory=FakeInventoryService(stocked))
    dispatch = build_fallback_output(sample_jobs(), PREFS, PLAN_DATE)

    async def run() -> tuple[dict, dict]:
        plan = await services.plans.create_plan(USER_ID, PLAN_DATE, ["job-a", "job-b", "job-c"])
        ctx = PlanContext(USER_ID, plan["id"], ["job-a", "job-b", "job-c"], PLAN_DATE)
        output = await run_inventory(services, ctx, dispatch)
        return output, await services.plans.get_plan(plan["id"])

    output, plan = asyncio.run(run())

    assert output["shopping_list"] == []
    assert output["hardware_store_run"] is None
    assert output["created_hardware_store_jobs"] == []
    assert plan["status"] == "inventory_complete"
    assert plan["current_step"] == "complete"
    assert output["agent_reasoning"].startswith("Analyzed 3 jobs and 6 inventory items.")


def test_store_jobs_are_created_per_store_and_recorded(make_services) -> None:
    services = make_services()
    dispatch = build_fallback_output(sample_jobs(), PREFS, PLAN_DATE)

    async def run() -> tuple[dict, dict]:
        plan = await services.plans.create_plan(USER_ID, PLAN_DATE, ["job-a", "job-b", "job-c"])
        ctx = PlanContext(USER_ID, plan["id"], ["job-a", "job-b", "job-c"], PLAN_DATE)
        inventory_output = await run_inventory(services, ctx, dispatch)
        result = await create_hardware_store_jobs(services, ctx, inventory_output, ["earlier-job"])
        return result, await services.plans.get_plan(plan["id"])

    result, plan = asyncio.run(run())

    created = result["inventory_output"]["created_hardware_store_jobs"]
    assert len(created) == len(result["inventory_output"]["hardware_store_run"]["store_locations"])
    assert result["created_job_ids"] == ["earlier-job"] + [c["job_id"] for c in created]
    assert plan["created_job_ids"] == result["created_job_ids"]
    assert plan["current_step"] == "complete"


def test_store_job_creation_requires_a_store_run(make_services) -> None:
    services = make_services()

    async def run() -> dict:
        plan = await services.plans.create_plan(USER_ID, PLAN_DATE, ["job-a"])
        with pytest.raises(StageFailure) as caught:
            await create_hardware_store_jobs(
                services, PlanContext(USER_ID, plan["id"], ["job-a"], PLAN_DATE), {"hardware_store_run": None}
            )
        return caught.value.error_state

    error_state = asyncio.run(run())

    assert error_state["failed_step"] == "hardware_store_creation"
    assert error_state["error_type"] == "validation_error"
