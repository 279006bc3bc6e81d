"""
ONE-STOP-SHOP Configuration File
================================
Every hardcoded value of the daily planner lives here: stage agent metadata,
model settings, database config, workflow limits, routing and supplier
defaults, default user preferences, and UI text.

To change a model, a retry limit, a default preference, or the supplier
fallback store, edit ONLY this file.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ============================================================
# Stage Agent Configuration
# ============================================================

AGENTS = {
    "dispatcher": {
        "name": "Dispatcher",
        "role": "Dispatch Strategist",
        "title": "Dispatch Strategist - Job Prioritization",
        "model": "gpt-4o",
        "description": "Orders the day's jobs by urgency, business impact and time windows",
        "color": "#1E90FF",
    },
    "router": {
        "name": "Router",
        "role": "Route Planner",
        "title": "Route Planner - Travel Optimization",
        "model": None,  # Deterministic, talks to the route solver
        "description": "Builds the driving sequence with arrival and departure times",
        "color": "#32CD32",
    },
    "inventory": {
        "name": "Inventory",
        "role": "Inventory Specialist",
        "title": "Inventory Specialist - Parts & Supply Runs",
        "model": None,  # Deterministic, talks to the supplier catalog
        "description": "Checks parts against stock and plans hardware store runs",
        "color": "#FFD700",
    },
    "system": {
        "name": "System",
        "role": "System",
        "title": "Daily Planning System",
        "model": None,
        "description": "Workflow status, approvals and errors",
        "color": "#4DA6FF",
    },
}

# ============================================================
# Model Configuration
# ============================================================

MODELS = {
    "main": "gpt-4o",               # Dispatch reasoning
    "lightweight": "gpt-4o-mini",    # Cheap helper calls
    "temperature": 0.1,              # Low temperature for deterministic outputs
    "max_tokens": 4096,              # Max tokens per response
}

# ============================================================
# Database Configuration
# ============================================================

DATABASE = {
    "url": os.getenv("DATABASE_URL", ""),
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "5432")),
    "name": os.getenv("DB_NAME", "daily_planner"),
    "user": os.getenv("DB_USER", "postgres"),
    "password": os.getenv("DB_PASSWORD", ""),
    "min_connections": 2,
    "max_connections": 10,
}


def get_database_url() -> str:
    """Build PostgreSQL connection URL from config."""
    if DATABASE["url"]:
        return DATABASE["url"]
    return (
        f"postgresql://{DATABASE['user']}:{DATABASE['password']}"
        f"@{DATABASE['host']}:{DATABASE['port']}/{DATABASE['name']}"
    )

# ============================================================
# Workflow Configuration
# ============================================================

WORKFLOW = {
    "max_retries": 3,                # Failed attempts before a plan is terminal
    "stale_plan_minutes": 30,        # Running plans older than this time out
    "recursion_limit": 60,           # LangGraph super-step limit per run
    "fallback_slot_minutes": 120,    # Slot length used by the fallback dispatcher
    "notify_channel": "daily_plan_changes",
    "subscribe_timeout_seconds": 5,  # Wait for LISTEN before the run starts
    "default_user_id": os.getenv("PLANNER_USER_ID", ""),
}

# ============================================================
# Routing Configuration
# ============================================================

ROUTING = {
    "engine": os.getenv("ROUTING_ENGINE", "estimate"),   # "estimate" or "vroom"
    "vroom_url": os.getenv("VROOM_URL", "http://localhost:3000"),
    "vehicle_id": "main_vehicle",
    "default_start": (-122.4194, 37.7749),               # (lon, lat)
    "average_speed_kmh": 40.0,
    "road_factor": 1.3,                                  # Great-circle to road distance
    "timeout_seconds": 30.0,
}

# ============================================================
# Supplier Configuration
# ============================================================

SUPPLIER = {
    "search_latitude": 37.7749,
    "search_longitude": -122.4194,
    "radius_miles": 15,
    "max_stores": 3,
    "minutes_per_item": 5,
    "min_visit_minutes": 20,
    "max_visit_minutes": 60,
    "default_unit_cost": 15.0,
    "fallback_store": {
        "address": "123 Hardware Street, San Francisco, CA",
        "latitude": 37.7849,
        "longitude": -122.4094,
        "visit_minutes": 30,
    },
}

# ============================================================
# Default User Preferences
# ============================================================

DEFAULT_PREFERENCES = {
    # ---- Work schedule ----
    "work_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
    "work_start_time": "08:00",
    "work_end_time": "17:00",
    "lunch_break_start": "12:00",
    "lunch_break_end": "13:00",
    "lunch_break_duration_minutes": 60,
    "short_break_duration_minutes": 15,
    "short_break_frequency_hours": 3,
    "break_location_preference": "flexible",
    "break_buffer_minutes": 5,

    # ---- Buffers ----
    "travel_buffer_percentage": 15,
    "emergency_travel_buffer_percentage": 25,
    "peak_hour_buffer_percentage": 10,
    "weather_buffer_percentage": 20,
    "job_duration_buffer_minutes": 15,
    "enable_smart_buffers": True,

    # ---- Emergency / demand handling ----
    "emergency_response_time_minutes": 60,
    "emergency_buffer_minutes": 30,
    "emergency_job_types": ["emergency", "urgent", "gas_leak", "flooding", "electrical_hazard"],
    "demand_response_time_hours": 4,
    "maintenance_scheduling_window_days": 7,

    # ---- Vehicle ----
    "vehicle_type": "Service Van",
    "vehicle_capacity_cubic_feet": 200,
    "parts_capacity_weight_lbs": 1500,
    "load_unload_time_minutes": 10,
    "toll_preference": "minimize",
    "highway_preference": "flexible",
    "home_base_latitude": None,
    "home_base_longitude": None,

    # ---- Suppliers ----
    "primary_supplier": "Home Depot",
    "secondary_suppliers": ["Lowe's", "Ferguson"],
    "specialty_suppliers": {
        "electrical": "Grainger",
        "plumbing": "Ferguson",
        "hvac": "Johnstone Supply",
    },
    "supplier_preferences": "availability",

    # ---- Stock thresholds ----
    "critical_items_min_stock": 5,
    "standard_items_min_stock": 2,
    "reorder_threshold_percentage": 25,
    "safety_stock_percentage": 10,

    # ---- Parts knowledge ----
    "job_type_templates": {
        "plumbing_repair": ["pipe_fitting", "pipe_sealant", "teflon_tape"],
        "electrical_repair": ["wire_nuts", "electrical_tape", "electrical_outlet"],
        "hvac_service": ["air_filter", "refrigerant", "thermostat_battery"],
        "inspection": [],
    },
    "common_job_types": ["plumbing_repair", "electrical_repair", "hvac_service", "inspection"],
    "quality_preference": "standard",
    "preferred_brands": ["Kohler", "Leviton", "Honeywell"],
    "substitution_rules": {
        "allow_brand_substitution": True,
        "allow_generic_substitution": True,
    },
    "stock_strategy": "immediate_availability",
    "delivery_preference": "pickup",
    "lead_time_days": 3,
    "bulk_order_threshold": 15,
    "emergency_stock_items": ["pipe_sealant", "electrical_tape", "wire_nuts"],

    # ---- Clients ----
    "vip_client_ids": [],

    # ---- Workflow ----
    "approval_checkpoints": [],      # Any of: dispatch, route, inventory
}

# ============================================================
# UI Configuration
# ============================================================

UI = {
    "app_title": "Daily Field Service Planner",
    "app_description": "Dispatch, routing and parts planning for the day",
    "streaming_delay_ms": 15,
    "welcome_message": (
        "Welcome to the **Daily Field Service Planner**.\n\n"
        "I run your day through three specialists:\n"
        "- **Dispatcher** - orders jobs by urgency and time windows\n"
        "- **Router** - sequences stops with arrival times\n"
        "- **Inventory** - checks parts and plans hardware store runs\n\n"
        "**Try:**\n"
        "- `plan 2026-10-20` to plan a day (defaults to today)\n"
        "- `retry` to re-run the latest failed plan\n"
    ),
}
