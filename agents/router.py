"""
Route Stage
===========
Turns the dispatch order into a driving plan.
- Builds a routing request from the prioritized jobs, their dispatch time
  windows, and the vehicle profile in the user's preferences
- Hands it to the configured RouteSolver
- Converts the solver's steps into numbered waypoints with timing
"""

import logging

from agents.context import PlanContext, PlanningServices, load_preferences, stage_boundary
from agents.dispatcher import from_epoch, to_epoch
from config.settings import ROUTING
from services.errors import ExternalToolError, StageValidationError
from services.plans import PlanStatus, PlanStep

logger = logging.getLogger(__name__)


def _vehicle_start(prefs: dict) -> list[float]:
    lat, lon = prefs.get("home_base_latitude"), prefs.get("home_base_longitude")
    if lat is not None and lon is not None:
        return [float(lon), float(lat)]
    return list(ROUTING["default_start"])


def build_routing_request(dispatch_output: dict, jobs_by_id: dict, prefs: dict) -> dict:
    """RouteSolver request for the prioritized jobs (see tools.routing)."""
    request_jobs = []
    has_emergency = False

    for entry in dispatch_output["prioritized_jobs"]:
        job = jobs_by_id.get(entry["job_id"])
        if job is None:
            raise StageValidationError("route", f"Job {entry['job_id']} from dispatch output was not found")
        if job.get("latitude") is None or job.get("longitude") is None:
            raise StageValidationError("route", f"Job {entry['job_id']} has no coordinates")

        service = int(job.get("estimated_duration") or 60) * 60
        window_start = to_epoch(entry["estimated_start_time"])
        window_end = max(window_start, to_epoch(entry["estimated_end_time"]))
        has_emergency = has_emergency or entry.get("job_type") == "emergency"

        request_jobs.append({
            "id": str(job["id"]),
            "location": [float(job["longitude"]), float(job["latitude"])],
            "service": service,
            "time_windows": [[window_start, window_end]],
            "priority": int(entry["priority_rank"]),
        })

    buffer_key = "emergency_travel_buffer_percentage" if has_emergency else "travel_buffer_percentage"
    return {
        "jobs": request_jobs,
        "vehicle": {
            "id": ROUTING["vehicle_id"],
            "description": prefs["vehicle_type"],
            "profile": "car",
            "start": _vehicle_start(prefs),
            "end": None,
            "capacity": [int(prefs["parts_capacity_weight_lbs"])],
        },
        "options": {
            "minimize": "time",
            "avoid_tolls": prefs.get("toll_preference") == "avoid",
            "avoid_highways": prefs.get("highway_preference") == "avoid",
            "travel_buffer_percentage": float(prefs.get(buffer_key, 0)),
        },
    }


def parse_route_response(response: dict, request: dict, jobs_by_id: dict) -> dict:
    """Waypoints and totals from a RouteSolver response. Raises when no route came back."""
    routes = response.get("routes") or []
    if not routes:
        raise ExternalToolError("route", "No route returned from routing engine", {"code": response.get("code")})

    route = routes[0]
    job_steps = [step for step in route.get("steps", []) if step.get("type") == "job"]
    if not job_steps:
        raise ExternalToolError("route", "Routing engine returned a route with no job stops")

    priorities = {job["id"]: job["priority"] for job in request["jobs"]}
    waypoints = []
    for index, step in enumerate(job_steps):
        job = jobs_by_id.get(step["job"], {})
        following = job_steps[index + 1] if index + 1 < len(job_steps) else None
        arrival = int(step["arrival"])
        service = int(step.get("service", 0))
        waypoints.append({
            "sequence": index + 1,
            "job_id": step["job"],
            "title": job.get("title"),
            "address": job.get("address"),
            "latitude": step["location"][1],
            "longitude": step["location"][0],
            "arrival_time": from_epoch(arrival),
            "departure_time": from_epoch(arrival + service),
            "duration_at_location": round(service / 60),
            "waiting_time": round(int(step.get("waiting_time", 0)) / 60),
            "travel_time_to_next": round(following["travel_time"] / 60) if following else 0,
            "distance_to_next": int(following["distance"]) if following else 0,
            "priority": priorities.get(step["job"]),
        })

    summary = response.get("summary") or {}
    total_distance = int(summary.get("distance", route.get("distance", 0)))
    total_travel_time = round(int(summary.get("duration", route.get("duration", 0))) / 60)
    total_work_time = sum(w["duration_at_location"] for w in waypoints)
    unassigned = list(response.get("unassigned") or [])

    notes = (
        f"Visiting {len(waypoints)} stops in priority order: {total_distance / 1000:.1f} km "
        f"and {total_travel_time} min of driving including a "
        f"{request['options']['travel_buffer_percentage']:g}% travel buffer."
    )
    if unassigned:
        notes += f" {len(unassigned)} job(s) could not be fitted into the route."

    return {
        "optimized_route": {
            "waypoints": waypoints,
            "total_distance": total_distance,
            "total_travel_time": total_travel_time,
            "total_work_time": total_work_time,
            "route_geometry": route.get("geometry", ""),
        },
        "vehicle": request["vehicle"],
        "unassigned_job_ids": unassigned,
        "optimization_notes": notes,
        "agent_reasoning": notes,
    }


async def run_route(services: PlanningServices, ctx: PlanContext, dispatch_output: dict) -> dict:
    """Route the dispatched jobs and store the route output on the plan."""
    async with stage_boundary(services, ctx, PlanStep.ROUTE.value):
        if not dispatch_output or not dispatch_output.get("prioritized_jobs"):
            raise StageValidationError("route", "Dispatch output is required before routing")

        await services.plans.update_plan(ctx.plan_id, current_step=PlanStep.ROUTE)
        prefs = await load_preferences(services, ctx)

        job_ids = [entry["job_id"] for entry in dispatch_output["prioritized_jobs"]]
        jobs = await services.jobs.get_jobs_by_ids(ctx.user_id, job_ids)
        jobs_by_id = {str(job["id"]): job for job in jobs}

        request = build_routing_request(dispatch_output, jobs_by_id, prefs)
        try:
            response = await services.route_solver.solve(request)
        except ExternalToolError:
            raise
        except Exception as exc:
            raise ExternalToolError("route", f"Route solver failed: {exc}") from exc

        output = parse_route_response(response, request, jobs_by_id)
        route = output["optimized_route"]
        await services.plans.update_plan(
            ctx.plan_id,
            status=PlanStatus.ROUTE_COMPLETE,
            current_step=PlanStep.INVENTORY,
            route_output=output,
            total_distance=round(route["total_distance"] / 1000, 2),
            total_estimated_duration=route["total_travel_time"] + route["total_work_time"],
        )
        logger.info(
            f"Route complete for plan {ctx.plan_id}: {len(route['waypoints'])} stops, "
            f"{route['total_distance']} m"
        )
        return output
