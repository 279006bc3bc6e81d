"""
Route Solvers
=============
RouteSolver is the seam between the route stage and a vehicle routing engine.

Request (VROOM-style, times in epoch seconds, coordinates [lon, lat]):
    {
      "jobs": [{"id": str, "location": [lon, lat], "service": int,
                "time_windows": [[start, end]], "priority": int}],
      "vehicle": {"id": str, "start": [lon, lat], "end": [lon, lat] | None,
                  "capacity": [int], "profile": str},
      "options": {"minimize": "time", "avoid_tolls": bool,
                  "travel_buffer_percentage": float}
    }
    jobs must be non-empty; priority 1 is the most important job.

Response:
    {
      "code": 0,
      "summary": {"distance": m, "duration": s, "service": s},
      "routes": [{"vehicle": str, "distance": m, "duration": s, "geometry": str,
                  "steps": [{"type": "start" | "job" | "end", "job": str | None,
                             "location": [lon, lat], "arrival": epoch s,
                             "service": s, "waiting_time": s,
                             "travel_time": s, "distance": m}]}],
      "unassigned": [job ids]
    }
    travel_time and distance on a step describe the leg that reaches it.
    An empty "routes" list means no feasible route.
"""

import logging
import math
from typing import Optional, Protocol

import httpx

from config.settings import ROUTING
from services.errors import ExternalToolError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class RouteSolver(Protocol):
    async def solve(self, request: dict) -> dict: ...


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _first_window_start(job: dict) -> Optional[int]:
    windows = job.get("time_windows") or []
    return int(windows[0][0]) if windows else None


# ============================================================
# Estimated solver (no external engine)
# ============================================================


class EstimatedRouteSolver:
    """
    Visits jobs in the order given (the dispatcher's priority order).
    Legs are great-circle distance times a road factor, driven at an average
    speed, padded by the travel buffer percentage. The vehicle waits when it
    arrives before a job's window opens. This is an estimate, not a VRP solve.
    """

    def __init__(
        self,
        average_speed_kmh: float = ROUTING["average_speed_kmh"],
        road_factor: float = ROUTING["road_factor"],
    ):
        self.average_speed_kmh = average_speed_kmh
        self.road_factor = road_factor

    def _leg(self, origin: list, destination: list, buffer_pct: float) -> tuple[int, int]:
        km = haversine_km(origin[1], origin[0], destination[1], destination[0]) * self.road_factor
        seconds = km / self.average_speed_kmh * 3600 * (1 + buffer_pct / 100)
        return int(round(km * 1000)), int(round(seconds))

    async def solve(self, request: dict) -> dict:
        jobs = request.get("jobs") or []
        vehicle = request["vehicle"]
        buffer_pct = float(request.get("options", {}).get("travel_buffer_percentage", 0))

        if not jobs:
            return {"code": 0, "summary": {"distance": 0, "duration": 0, "service": 0}, "routes": [], "unassigned": []}

        position = vehicle["start"]
        first_distance, first_travel = self._leg(position, jobs[0]["location"], buffer_pct)
        first_window = _first_window_start(jobs[0])
        clock = (first_window - first_travel) if first_window is not None else 0

        steps = [{
            "type": "start", "job": None, "location": position, "arrival": clock,
            "service": 0, "waiting_time": 0, "travel_time": 0, "distance": 0,
        }]
        total_distance = total_travel = total_service = 0

        for job in jobs:
            distance, travel = self._leg(position, job["location"], buffer_pct)
            arrival = clock + travel
            window_start = _first_window_start(job)
            waiting = max(0, window_start - arrival) if window_start is not None else 0
            arrival += waiting
            service = int(job.get("service", 0))

            steps.append({
                "type": "job", "job": job["id"], "location": job["location"], "arrival": arrival,
                "service": service, "waiting_time": waiting, "travel_time": travel, "distance": distance,
            })
            clock = arrival + service
            position = job["location"]
            total_distance += distance
            total_travel += travel
            total_service += service

        if vehicle.get("end"):
            distance, travel = self._leg(position, vehicle["end"], buffer_pct)
            steps.append({
                "type": "end", "job": None, "location": vehicle["end"], "arrival": clock + travel,
                "service": 0, "waiting_time": 0, "travel_time": travel, "distance": distance,
            })
            total_distance += distance
            total_travel += travel

        geometry = ";".join(f"{step['location'][0]:.5f},{step['location'][1]:.5f}" for step in steps)
        logger.info(f"Estimated route over {len(jobs)} jobs: {total_distance} m, {total_travel} s travel")
        return {
            "code": 0,
            "summary": {"distance": total_distance, "duration": total_travel, "service": total_service},
            "routes": [{
                "vehicle": vehicle["id"],
                "distance": total_distance,
                "duration": total_travel,
                "geometry": geometry,
                "steps": steps,
            }],
            "unassigned": [],
        }


# ============================================================
# VROOM HTTP solver
# ============================================================


class VroomRouteSolver:
    """Solves the request with a VROOM server and normalizes its answer."""

    def __init__(
        self,
        base_url: str = ROUTING["vroom_url"],
        timeout: float = ROUTING["timeout_seconds"],
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @staticmethod
    def to_vroom(request: dict) -> dict:
        jobs = request.get("jobs") or []
        vehicle = request["vehicle"]
        payload = {
            "jobs": [
                {
                    "id": index + 1,
                    "description": job["id"],
                    "location": job["location"],
                    "service": int(job.get("service", 0)),
                    "time_windows": job.get("time_windows") or [],
                    # VROOM ranks 0..100 with 100 the most important
                    "priority": max(0, min(100, 101 - int(job.get("priority", 1)))),
                }
                for index, job in enumerate(jobs)
            ],
            "vehicles": [{
                "id": 1,
                "description": vehicle["id"],
                "profile": vehicle.get("profile", "car"),
                "start": vehicle["start"],
                "capacity": vehicle.get("capacity", []),
            }],
            "options": {"g": True},
        }
        if vehicle.get("end"):
            payload["vehicles"][0]["end"] = vehicle["end"]
        if payload["vehicles"][0]["capacity"]:
            for job in payload["jobs"]:
                job["delivery"] = [0] * len(payload["vehicles"][0]["capacity"])
        return payload

    @staticmethod
    def from_vroom(request: dict, body: dict) -> dict:
        if body.get("code", 0) != 0:
            raise ExternalToolError("route", f"VROOM error {body.get('code')}: {body.get('error', 'unknown')}")

        job_ids = [job["id"] for job in request.get("jobs") or []]
        routes = []
        for route in body.get("routes") or []:
            steps = []
            previous_duration = previous_distance = 0
            for step in route.get("steps", []):
                duration = int(step.get("duration", 0))
                distance = int(step.get("distance", 0))
                steps.append({
                    "type": step["type"],
                    "job": job_ids[step["id"] - 1] if step["type"] == "job" else None,
                    "location": step.get("location"),
                    "arrival": int(step.get("arrival", 0)),
                    "service": int(step.get("service", 0)),
                    "waiting_time": int(step.get("waiting_time", 0)),
                    "travel_time": duration - previous_duration,
                    "distance": distance - previous_distance,
                })
                previous_duration, previous_distance = duration, distance
            routes.append({
                "vehicle": request["vehicle"]["id"],
                "distance": int(route.get("distance", previous_distance)),
                "duration": int(route.get("duration", previous_duration)),
                "geometry": route.get("geometry", ""),
                "steps": steps,
            })

        summary = body.get("summary", {})
        return {
            "code": 0,
            "summary": {
                "distance": int(summary.get("distance", 0)),
                "duration": int(summary.get("duration", 0)),
                "service": int(summary.get("service", 0)),
            },
            "routes": routes,
            "unassigned": [job_ids[item["id"] - 1] for item in body.get("unassigned", [])],
        }

    async def solve(self, request: dict) -> dict:
        payload = self.to_vroom(request)
        try:
            if self._client is not None:
                response = await self._client.post(self.base_url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.base_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalToolError(
                "route", f"Routing engine request failed: {exc}", {"url": self.base_url}
            ) from exc

        return self.from_vroom(request, response.json())
