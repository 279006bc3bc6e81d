"""
Inventory Stage
===============
Makes sure the technician leaves with the right parts.
- Builds a parts manifest per job and compares it with stock on hand
- Aggregates shortfalls into a shopping list
- Asks the supplier catalog where the list can be bought, falling back to a
  single synthetic store when the catalog fails or finds nothing
- Raises stock alerts against the user's critical threshold
- Turns a planned store run into pickup jobs (hardware_store_creation step)
"""

import asyncio
import logging
from typing import Optional

from agents.context import PlanContext, PlanningServices, load_preferences, stage_boundary
from config.settings import SUPPLIER
from services.errors import StageValidationError
from services.plans import PlanStatus, PlanStep
from tools.supplier import SupplierCatalog, supplier_key

logger = logging.getLogger(__name__)

URGENT_PRIORITIES = ("urgent",)
URGENT_JOB_TYPES = ("emergency",)


def humanize(name: str) -> str:
    """'pipe_fitting' -> 'Pipe Fitting'. Names with spaces are kept as written."""
    if " " in name or "_" not in name:
        return name
    return name.replace("_", " ").title()


# ============================================================
# Parts manifest
# ============================================================


def _template_for(job: dict, prefs: dict) -> list[str]:
    templates = prefs.get("job_type_templates") or {}
    job_type = str(job.get("job_type") or "")
    if job_type in templates:
        return templates[job_type]
    title = str(job.get("title") or "").lower()
    for key, parts in templates.items():
        if key.split("_")[0] in title:
            return parts
    return []


def resolve_required_parts(job: dict, prefs: dict) -> list[dict]:
    """Parts a job needs, from its required_items or the matching job-type template."""
    parts = []
    for item in job.get("required_items") or []:
        if isinstance(item, str):
            parts.append({"name": item, "quantity": 1, "inventory_item_id": item})
        elif isinstance(item, dict):
            name = item.get("name") or item.get("item_name")
            if not name and not item.get("inventory_item_id"):
                continue
            parts.append({
                "name": name or item.get("inventory_item_id"),
                "quantity": int(item.get("quantity") or item.get("quantity_needed") or 1),
                "unit": item.get("unit"),
                "category": item.get("category"),
                "inventory_item_id": item.get("inventory_item_id"),
            })

    if not parts:
        parts = [{"name": humanize(name), "quantity": 1} for name in _template_for(job, prefs)]
    return parts


def find_inventory_item(part: dict, inventory: list[dict]) -> Optional[dict]:
    """Match by id, then exact name, then substring (case-insensitive)."""
    item_id = part.get("inventory_item_id")
    if item_id:
        for item in inventory:
            if str(item.get("id")) == str(item_id):
                return item

    name = str(part.get("name") or "").lower()
    if not name:
        return None
    for item in inventory:
        if str(item.get("name", "")).lower() == name:
            return item
    for item in inventory:
        item_name = str(item.get("name", "")).lower()
        if item_name and (name in item_name or item_name in name):
            return item
    return None


def build_parts_manifest(jobs: list[dict], inventory: list[dict], prefs: dict) -> list[dict]:
    manifest = []
    for job in jobs:
        required = []
        for part in resolve_required_parts(job, prefs):
            item = find_inventory_item(part, inventory)
            available = int(item.get("quantity") or 0) if item else 0
            required.append({
                "inventory_item_id": str(item["id"]) if item else None,
                "item_name": item["name"] if item else part["name"],
                "quantity_needed": part["quantity"],
                "quantity_available": available,
                "unit": part.get("unit") or (item or {}).get("unit") or "each",
                "category": part.get("category") or (item or {}).get("category") or "general",
                "unit_cost": (item or {}).get("cost_per_unit"),
            })
        manifest.append({
            "job_id": str(job["id"]),
            "job_title": job.get("title"),
            "job_priority": job.get("priority"),
            "job_type": job.get("job_type"),
            "required_parts": required,
        })
    return manifest


# ============================================================
# Shopping list
# ============================================================


def _is_urgent(job_manifest: dict) -> bool:
    return (
        str(job_manifest.get("job_priority")) in URGENT_PRIORITIES
        or str(job_manifest.get("job_type")) in URGENT_JOB_TYPES
    )


def _preferred_supplier(category: str, prefs: dict) -> str:
    specialty = prefs.get("specialty_suppliers") or {}
    return specialty.get(category) or prefs["primary_supplier"]


def generate_shopping_list(manifest: list[dict], prefs: dict) -> list[dict]:
    """One entry per distinct item name; quantity is the sum of per-job shortfalls."""
    entries: dict[str, dict] = {}
    for job_manifest in manifest:
        for part in job_manifest["required_parts"]:
            needed, available = part["quantity_needed"], part["quantity_available"]
            if needed <= available:
                continue

            unit_cost = float(part.get("unit_cost") or SUPPLIER["default_unit_cost"])
            entry = entries.setdefault(part["item_name"], {
                "item_name": part["item_name"],
                "inventory_item_id": part.get("inventory_item_id"),
                "quantity_needed": 0,
                "unit": part["unit"],
                "category": part["category"],
                "preferred_supplier": _preferred_supplier(part["category"], prefs),
                "unit_cost": unit_cost,
                "estimated_cost": 0.0,
                "priority": "medium",
                "job_ids": [],
            })
            entry["quantity_needed"] += needed - available
            entry["estimated_cost"] = round(entry["quantity_needed"] * entry["unit_cost"], 2)
            if _is_urgent(job_manifest):
                entry["priority"] = "high"
            if job_manifest["job_id"] not in entry["job_ids"]:
                entry["job_ids"].append(job_manifest["job_id"])
    return list(entries.values())


# ============================================================
# Store run
# ============================================================


def _visit_minutes(item_count: int) -> int:
    minutes = item_count * SUPPLIER["minutes_per_item"]
    return max(SUPPLIER["min_visit_minutes"], min(SUPPLIER["max_visit_minutes"], minutes))


def store_run_from_supplier(response: dict, shopping_list: list[dict]) -> dict:
    quantities = {entry["item_name"]: entry["quantity_needed"] for entry in shopping_list}
    in_stock = [item for item in response.get("items", []) if item.get("in_stock")]
    in_stock_names = [item["item_name"] for item in in_stock]
    visit = _visit_minutes(len(in_stock))

    stores = []
    for store in response["stores"]:
        stores.append({
            "store_id": store.get("store_id"),
            "store_name": store["store_name"],
            "address": f"{store['address']}, {store['city']}, {store['state']} {store['zip_code']}",
            "latitude": store["coordinates"]["latitude"],
            "longitude": store["coordinates"]["longitude"],
            "distance_miles": store.get("distance_miles"),
            "phone": store.get("phone"),
            "hours": store.get("hours"),
            "items_available": in_stock_names,
            "estimated_visit_time": visit,
        })

    total_cost = sum(
        item["price"] * quantities.get(item["item_name"], 1) for item in response.get("items", [])
    )
    return {
        "source": "supplier_api",
        "supplier": response.get("supplier"),
        "store_locations": stores,
        "total_estimated_cost": round(total_cost, 2),
        "total_shopping_time": sum(store["estimated_visit_time"] for store in stores),
        "items_unavailable": [
            item["item_name"] for item in response.get("items", []) if not item.get("in_stock")
        ],
    }


def fallback_store_run(shopping_list: list[dict], prefs: dict, reason: str = "") -> dict:
    fallback = SUPPLIER["fallback_store"]
    store = {
        "store_id": None,
        "store_name": prefs["primary_supplier"],
        "address": fallback["address"],
        "latitude": fallback["latitude"],
        "longitude": fallback["longitude"],
        "distance_miles": None,
        "phone": None,
        "hours": None,
        "items_available": [entry["item_name"] for entry in shopping_list],
        "estimated_visit_time": fallback["visit_minutes"],
    }
    return {
        "source": "fallback",
        "supplier": supplier_key(prefs["primary_supplier"]),
        "store_locations": [store],
        "total_estimated_cost": round(sum(entry["estimated_cost"] for entry in shopping_list), 2),
        "total_shopping_time": store["estimated_visit_time"],
        "items_unavailable": [],
        "fallback_reason": reason,
    }


async def plan_hardware_store_run(
    catalog: SupplierCatalog, shopping_list: list[dict], prefs: dict
) -> dict:
    """Store run from the supplier catalog. Catalog failures degrade to the fallback store."""
    supplier = supplier_key(prefs["primary_supplier"])
    items = [
        {
            "item_name": entry["item_name"],
            "quantity_needed": entry["quantity_needed"],
            "category": entry["category"],
            "unit": entry["unit"],
        }
        for entry in shopping_list
    ]
    location = {
        "latitude": SUPPLIER["search_latitude"],
        "longitude": SUPPLIER["search_longitude"],
        "radius_miles": SUPPLIER["radius_miles"],
    }

    try:
        response = await catalog.check_availability(supplier, items, location)
    except Exception as exc:
        logger.warning(f"Supplier lookup for {supplier} failed, using fallback store: {exc}", exc_info=True)
        return fallback_store_run(shopping_list, prefs, reason=str(exc))

    if not response.get("success") or not response.get("stores"):
        logger.info(f"Supplier {supplier} returned no stores, using fallback store")
        return fallback_store_run(shopping_list, prefs, reason=response.get("message", "no stores"))

    return store_run_from_supplier(response, shopping_list)


# ============================================================
# Alerts
# ============================================================


def generate_inventory_alerts(inventory: list[dict], prefs: dict) -> list[dict]:
    """out_of_stock at zero, low_stock for 0 < quantity <= critical minimum."""
    threshold = prefs["critical_items_min_stock"]
    alerts = []
    for item in inventory:
        quantity = item.get("quantity")
        if quantity is None:
            continue
        if quantity == 0:
            alert_type, message = "out_of_stock", f"{item['name']} is out of stock"
        elif 0 < quantity <= threshold:
            alert_type, message = "low_stock", f"{item['name']} is running low ({quantity} remaining)"
        else:
            continue
        alerts.append({
            "alert_type": alert_type,
            "item_id": str(item.get("id")),
            "item_name": item["name"],
            "current_quantity": quantity,
            "threshold": threshold,
            "message": message,
            "suggested_action": f"Reorder from {_preferred_supplier(item.get('category') or '', prefs)}",
        })
    return alerts


# ============================================================
# Stage
# ============================================================


async def run_inventory(services: PlanningServices, ctx: PlanContext, dispatch_output: dict) -> dict:
    """Compute parts, shopping list, store run and alerts; store them on the plan."""
    async with stage_boundary(services, ctx, PlanStep.INVENTORY.value):
        if not dispatch_output or not dispatch_output.get("prioritized_jobs"):
            raise StageValidationError("inventory", "Dispatch output is required before inventory planning")

        await services.plans.update_plan(ctx.plan_id, current_step=PlanStep.INVENTORY)
        prefs = await load_preferences(services, ctx)

        job_ids = [entry["job_id"] for entry in dispatch_output["prioritized_jobs"]]
        jobs, inventory = await asyncio.gather(
            services.jobs.get_jobs_by_ids(ctx.user_id, job_ids),
            services.inventory.list_items(ctx.user_id),
        )

        manifest = build_parts_manifest(jobs, inventory, prefs)
        shopping_list = generate_shopping_list(manifest, prefs)
        store_run = (
            await plan_hardware_store_run(services.supplier_catalog, shopping_list, prefs)
            if shopping_list else None
        )
        alerts = generate_inventory_alerts(inventory, prefs)
        store_count = len(store_run["store_locations"]) if store_run else 0

        output = {
            "parts_manifest": manifest,
            "shopping_list": shopping_list,
            "hardware_store_run": store_run,
            "inventory_alerts": alerts,
            "created_hardware_store_jobs": [],
            "agent_reasoning": (
                f"Analyzed {len(jobs)} jobs and {len(inventory)} inventory items. "
                f"Generated {len(shopping_list)} items for shopping list. "
                f"Found {store_count} nearby stores with items in stock."
            ),
        }
        next_step = PlanStep.HARDWARE_STORE_CREATION if store_count else PlanStep.COMPLETE
        await services.plans.update_plan(
            ctx.plan_id,
            status=PlanStatus.INVENTORY_COMPLETE,
            current_step=next_step,
            inventory_output=output,
        )
        logger.info(
            f"Inventory complete for plan {ctx.plan_id}: {len(shopping_list)} shopping items, "
            f"{len(alerts)} alerts, {store_count} store(s)"
        )
        return output


def build_store_run_job(store: dict, plan_date: str) -> dict:
    items = ", ".join(store.get("items_available") or []) or "parts on the shopping list"
    return {
        "title": f"Hardware Store Run - {store['store_name']}",
        "description": f"Pick up parts: {items}",
        "job_type": "pickup",
        "priority": "medium",
        "status": "pending",
        "latitude": store["latitude"],
        "longitude": store["longitude"],
        "address": store["address"],
        "scheduled_date": plan_date,
        "estimated_duration": store["estimated_visit_time"],
        "customer_name": store["store_name"],
        "instructions": f"Items to pick up: {items}",
        "required_items": [],
    }


async def create_hardware_store_jobs(
    services: PlanningServices,
    ctx: PlanContext,
    inventory_output: dict,
    existing_created_ids: Optional[list[str]] = None,
) -> dict:
    """
    Create one pickup job per planned store and record the ids on the plan.
    Jobs are not deduplicated: a retried run creates a fresh set.
    """
    async with stage_boundary(services, ctx, PlanStep.HARDWARE_STORE_CREATION.value):
        store_run = (inventory_output or {}).get("hardware_store_run") or {}
        stores = store_run.get("store_locations") or []
        if not stores:
            raise StageValidationError("hardware_store_creation", "No store locations to create jobs for")

        await services.plans.update_plan(ctx.plan_id, current_step=PlanStep.HARDWARE_STORE_CREATION)

        created = []
        for store in stores:
            job = await services.jobs.create_job(ctx.user_id, build_store_run_job(store, ctx.plan_date))
            created.append({"job_id": str(job["id"]), "store_name": store["store_name"], "title": job.get("title")})

        created_ids = list(existing_created_ids or []) + [entry["job_id"] for entry in created]
        updated_output = {**inventory_output, "created_hardware_store_jobs": created}
        await services.plans.update_plan(
            ctx.plan_id,
            current_step=PlanStep.COMPLETE,
            created_job_ids=created_ids,
            inventory_output=updated_output,
        )
        logger.info(f"Created {len(created)} hardware store job(s) for plan {ctx.plan_id}")
        return {"created_job_ids": created_ids, "inventory_output": updated_output}
