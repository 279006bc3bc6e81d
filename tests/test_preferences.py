from __future__ import annotations

import asyncio
import copy

import pytest

from config.prompts import DISPATCHER_SYSTEM_PROMPT
from config.settings import DEFAULT_PREFERENCES
from services.preferences import (
    PreferencesService,
    format_dispatcher_preferences,
    format_inventory_preferences,
    format_router_preferences,
    inject_preferences_into_prompt,
    merge_preferences,
    validate_preferences,
)


class RecordingDB:
    def __init__(self, stored: dict | None = None):
        self.stored = stored
        self.executed: list[tuple] = []

    async def fetch_one(self, query, params=None):
        return {"preferences": self.stored} if self.stored is not None else None

    async def execute(self, query, params=None):
        self.executed.append((query, params))
        return 1


def test_merge_overlays_without_touching_the_base() -> None:
    base = copy.deepcopy(DEFAULT_PREFERENCES)

    merged = merge_preferences(base, {
        "work_start_time": "07:30",
        "specialty_suppliers": {"electrical": "CED"},
        "primary_supplier": None,
    })

    assert merged["work_start_time"] == "07:30"
    assert merged["specialty_suppliers"]["electrical"] == "CED"
    assert merged["specialty_suppliers"]["plumbing"] == "Ferguson"
    assert merged["primary_supplier"] == "Home Depot"
    assert base == DEFAULT_PREFERENCES


def test_stage_parameter_sets_render_as_text() -> None:
    prefs = merge_preferences(DEFAULT_PREFERENCES, {"vip_client_ids": [], "home_base_latitude": None})

    dispatcher = format_dispatcher_preferences(prefs)
    router = format_router_preferences(prefs)
    inventory = format_inventory_preferences(prefs)

    assert dispatcher["work_days"] == "monday, tuesday, wednesday, thursday, friday"
    assert dispatcher["vip_client_ids"] == "none"
    assert router["home_base_latitude"] == "not set"
    assert router["toll_preference"] == "minimize"
    assert inventory["specialty_suppliers"].startswith("electrical: Grainger")
    assert all(isinstance(value, str) for value in {**dispatcher, **router, **inventory}.values())


def test_prompt_injection_fills_known_keys_only() -> None:
    prompt = inject_preferences_into_prompt(
        DISPATCHER_SYSTEM_PROMPT + ' {"job_id": "x"}',
        format_dispatcher_preferences(DEFAULT_PREFERENCES),
    )

    assert "Hours: 08:00 to 17:00" in prompt
    assert "{work_start_time}" not in prompt
    assert '{"job_id": "x"}' in prompt


def test_defaults_are_valid() -> None:
    assert validate_preferences(DEFAULT_PREFERENCES) == []


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"work_start_time": "17:00", "work_end_time": "08:00"}, "Work start time must be before end time"),
        ({"lunch_break_start": "noon"}, "Lunch break times must use HH:MM"),
        ({"travel_buffer_percentage": -5}, "travel_buffer_percentage"),
        ({"parts_capacity_weight_lbs": 0}, "parts_capacity_weight_lbs"),
        ({"approval_checkpoints": ["dispatch", "payroll"]}, "payroll"),
    ],
)
def test_invalid_values_are_reported(overrides, fragment) -> None:
    errors = validate_preferences(merge_preferences(DEFAULT_PREFERENCES, overrides))
    assert any(fragment in error for error in errors)


def test_missing_profile_reads_as_defaults() -> None:
    service = PreferencesService(RecordingDB())

    prefs = asyncio.run(service.get_user_preferences("user-1"))

    assert prefs == DEFAULT_PREFERENCES
    assert prefs is not DEFAULT_PREFERENCES


def test_update_persists_the_merged_record() -> None:
    db = RecordingDB({"primary_supplier": "Lowe's"})
    service = PreferencesService(db)

    merged = asyncio.run(service.update_user_preferences("user-1", {"critical_items_min_stock": 8}))

    assert merged["primary_supplier"] == "Lowe's"
    assert merged["critical_items_min_stock"] == 8
    (query, params), = db.executed
    assert "ON CONFLICT (id) DO UPDATE" in query
    assert params[0] == "user-1"
    assert params[1].obj["critical_items_min_stock"] == 8


def test_invalid_update_is_not_written() -> None:
    db = RecordingDB()
    service = PreferencesService(db)

    with pytest.raises(ValueError):
        asyncio.run(service.update_user_preferences("user-1", {"work_end_time": "06:00"}))

    assert db.executed == []
