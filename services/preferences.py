"""
Preference Store
================
Reads and writes a user's planning preferences from the profile record,
merged against DEFAULT_PREFERENCES, and renders the per-stage parameter
sets that get injected into prompts.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Optional

from psycopg.types.json import Jsonb

from config.settings import DEFAULT_PREFERENCES

logger = logging.getLogger(__name__)

DISPATCHER_KEYS = [
    "work_days", "work_start_time", "work_end_time",
    "lunch_break_start", "lunch_break_end",
    "short_break_duration_minutes", "short_break_frequency_hours",
    "job_duration_buffer_minutes", "emergency_buffer_minutes",
    "travel_buffer_percentage", "emergency_travel_buffer_percentage",
    "emergency_response_time_minutes", "emergency_job_types",
    "demand_response_time_hours", "maintenance_scheduling_window_days",
    "vip_client_ids",
]

ROUTER_KEYS = [
    "work_start_time", "work_end_time", "lunch_break_start", "lunch_break_end",
    "travel_buffer_percentage", "emergency_travel_buffer_percentage",
    "peak_hour_buffer_percentage", "weather_buffer_percentage",
    "vehicle_type", "vehicle_capacity_cubic_feet", "parts_capacity_weight_lbs",
    "load_unload_time_minutes", "toll_preference", "highway_preference",
    "break_location_preference", "home_base_latitude", "home_base_longitude",
]

INVENTORY_KEYS = [
    "primary_supplier", "secondary_suppliers", "specialty_suppliers",
    "supplier_preferences", "critical_items_min_stock", "standard_items_min_stock",
    "reorder_threshold_percentage", "safety_stock_percentage",
    "quality_preference", "preferred_brands", "stock_strategy",
    "delivery_preference", "lead_time_days", "bulk_order_threshold",
    "emergency_stock_items",
]

PERCENTAGE_KEYS = [
    "travel_buffer_percentage", "emergency_travel_buffer_percentage",
    "peak_hour_buffer_percentage", "weather_buffer_percentage",
    "reorder_threshold_percentage", "safety_stock_percentage",
]


# ============================================================
# Pure helpers
# ============================================================


def merge_preferences(base: dict, overrides: Optional[dict]) -> dict:
    """Overlay non-None override values on a copy of base (one level deep for dicts)."""
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _to_prompt_value(value: Any) -> str:
    if value is None:
        return "not set"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) if value else "none"
    if isinstance(value, dict):
        return ", ".join(f"{k}: {v}" for k, v in value.items()) if value else "none"
    return str(value)


def _format(prefs: dict, keys: list[str]) -> dict[str, str]:
    return {key: _to_prompt_value(prefs.get(key, DEFAULT_PREFERENCES.get(key))) for key in keys}


def format_dispatcher_preferences(prefs: dict) -> dict[str, str]:
    return _format(prefs, DISPATCHER_KEYS)


def format_router_preferences(prefs: dict) -> dict[str, str]:
    return _format(prefs, ROUTER_KEYS)


def format_inventory_preferences(prefs: dict) -> dict[str, str]:
    return _format(prefs, INVENTORY_KEYS)


def inject_preferences_into_prompt(template: str, values: dict[str, str]) -> str:
    """Replace each literal {key} with its value. Unknown braces are left alone."""
    prompt = template
    for key, value in values.items():
        prompt = prompt.replace("{" + key + "}", value)
    return prompt


def _parse_clock(value: Any) -> Optional[datetime]:
    try:
        return datetime.strptime(str(value), "%H:%M")
    except ValueError:
        return None


def validate_preferences(prefs: dict) -> list[str]:
    """Return human-readable problems with a preference record (empty when valid)."""
    errors = []

    for start_key, end_key, label in (
        ("work_start_time", "work_end_time", "Work"),
        ("lunch_break_start", "lunch_break_end", "Lunch break"),
    ):
        start, end = _parse_clock(prefs.get(start_key)), _parse_clock(prefs.get(end_key))
        if start is None or end is None:
            errors.append(f"{label} times must use HH:MM")
        elif start >= end:
            errors.append(f"{label} start time must be before end time")

    for key in PERCENTAGE_KEYS:
        value = prefs.get(key)
        if not isinstance(value, (int, float)) or value < 0:
            errors.append(f"{key} must be a non-negative number")

    for key in ("vehicle_capacity_cubic_feet", "parts_capacity_weight_lbs"):
        value = prefs.get(key)
        if not isinstance(value, (int, float)) or value <= 0:
            errors.append(f"{key} must be greater than zero")

    unknown = set(prefs.get("approval_checkpoints") or []) - {"dispatch", "route", "inventory"}
    if unknown:
        errors.append(f"approval_checkpoints has unknown stages: {', '.join(sorted(unknown))}")

    return errors


# ============================================================
# Profile-backed store
# ============================================================


class PreferencesService:
    """Preferences stored as JSONB on the user's profile row."""

    def __init__(self, db):
        self.db = db

    async def get_user_preferences(self, user_id: str) -> dict:
        """Stored preferences merged over defaults. Defaults when no profile exists."""
        row = await self.db.fetch_one(
            "SELECT preferences FROM profiles WHERE id = %s",
            (user_id,),
        )
        if not row or not row.get("preferences"):
            logger.info(f"No stored preferences for user {user_id}, using defaults")
            return copy.deepcopy(DEFAULT_PREFERENCES)
        return merge_preferences(DEFAULT_PREFERENCES, row["preferences"])

    async def update_user_preferences(self, user_id: str, updates: dict) -> dict:
        """Merge updates into the stored preferences and persist the full record."""
        current = await self.get_user_preferences(user_id)
        merged = merge_preferences(current, updates)
        errors = validate_preferences(merged)
        if errors:
            raise ValueError("; ".join(errors))

        await self.db.execute(
            """
            INSERT INTO profiles (id, preferences)
            VALUES (%s, %s)
            ON CONFLICT (id) DO UPDATE
               SET preferences = EXCLUDED.preferences, updated_at = now()
            """,
            (user_id, Jsonb(merged)),
        )
        logger.info(f"Updated preferences for user {user_id}: {sorted(updates)}")
        return merged
