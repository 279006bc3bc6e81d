"""
Formatting Tools
================
Markdown card builders and formatters for rich Chainlit display.
Generates the dispatch order, route stops, shopping list, stock alerts
and the final plan summary from stage outputs.
"""

PRIORITY_ICONS = {
    "emergency": "🔴",
    "urgent": "🔴",
    "high": "🟠",
    "medium": "🟡",
    "low": "🟢",
}

STATUS_ICONS = {
    "approved": "🟢",
    "cancelled": "⚫",
    "error": "🔴",
}


def _clock(iso_time) -> str:
    """HH:MM from an ISO timestamp, or the input unchanged."""
    if not iso_time:
        return "--"
    text = str(iso_time)
    return text[11:16] if len(text) >= 16 and text[10] == "T" else text


def format_dispatch_table(dispatch_output: dict) -> str:
    """Format the prioritized job order as a markdown table."""
    entries = (dispatch_output or {}).get("prioritized_jobs") or []
    if not entries:
        return "*No jobs were prioritized.*"

    table = "| # | Job | Type | Window | Reason |\n"
    table += "|---|-----|------|--------|--------|\n"
    for entry in entries:
        table += (
            f"| {entry['priority_rank']} | {entry.get('title') or entry['job_id']} "
            f"| {entry.get('job_type', '')} "
            f"| {_clock(entry.get('estimated_start_time'))}-{_clock(entry.get('estimated_end_time'))} "
            f"| {entry.get('priority_reason', '')} |\n"
        )

    if dispatch_output.get("fallback_used"):
        table += "\n*Ordered by the rule-based fallback.*\n"
    return table


def format_waypoint_table(route_output: dict) -> str:
    """Format the route stops with arrival times and leg lengths."""
    route = (route_output or {}).get("optimized_route") or {}
    waypoints = route.get("waypoints") or []
    if not waypoints:
        return "*No route stops.*"

    table = "| Stop | Job | Address | Arrive | Depart | Next leg |\n"
    table += "|------|-----|---------|--------|--------|----------|\n"
    for w in waypoints:
        next_leg = (
            f"{w['distance_to_next'] / 1000:.1f} km / {w['travel_time_to_next']} min"
            if w.get("distance_to_next") else "-"
        )
        table += (
            f"| {w['sequence']} | {w.get('title') or w['job_id']} | {w.get('address') or 'N/A'} "
            f"| {_clock(w['arrival_time'])} | {_clock(w['departure_time'])} | {next_leg} |\n"
        )

    table += (
        f"\n**Total:** {route.get('total_distance', 0) / 1000:.1f} km, "
        f"{route.get('total_travel_time', 0)} min driving, "
        f"{route.get('total_work_time', 0)} min on site\n"
    )
    unassigned = (route_output or {}).get("unassigned_job_ids") or []
    if unassigned:
        table += f"\n⚠️ Could not fit: {', '.join(unassigned)}\n"
    return table


def format_shopping_list(inventory_output: dict) -> str:
    """Format the shopping list and the planned hardware store stops."""
    inventory_output = inventory_output or {}
    items = inventory_output.get("shopping_list") or []
    if not items:
        return "*Everything needed is on the van.*"

    table = "| Item | Qty | Supplier | Est. Cost | Priority |\n"
    table += "|------|-----|----------|-----------|----------|\n"
    for item in items:
        icon = PRIORITY_ICONS.get(item.get("priority", ""), "⚪")
        table += (
            f"| {item['item_name']} | {item['quantity_needed']} {item.get('unit', '')} "
            f"| {item.get('preferred_supplier', '')} | ${item.get('estimated_cost', 0):.2f} "
            f"| {icon} {item.get('priority', '').title()} |\n"
        )

    store_run = inventory_output.get("hardware_store_run") or {}
    stores = store_run.get("store_locations") or []
    if stores:
        table += "\n**Store stops:**\n"
        for store in stores:
            table += f"- {store['store_name']}, {store['address']} (~{store['estimated_visit_time']} min)\n"
        table += f"\nEstimated spend: **${store_run.get('total_estimated_cost', 0):.2f}**\n"
    return table


def format_inventory_alerts(alerts: list[dict]) -> str:
    if not alerts:
        return "*No stock alerts.*"
    lines = []
    for alert in alerts:
        icon = "🔴" if alert["alert_type"] == "out_of_stock" else "🟡"
        lines.append(f"- {icon} {alert['message']}. {alert.get('suggested_action', '')}".rstrip())
    return "\n".join(lines)


def format_error(error_state: dict) -> str:
    error_state = error_state or {}
    return (
        f"**{error_state.get('failed_step', 'unknown')}** failed "
        f"({error_state.get('error_type', 'unknown')}): {error_state.get('error_message', '')}"
    )


def format_plan_summary(state: dict) -> str:
    """Final plan card built from the workflow result."""
    status = state.get("final_status") or "in progress"
    icon = STATUS_ICONS.get(status, "⚪")
    summary = f"## Daily Plan - {state.get('plan_date', '')}\n\n"
    summary += f"**Status:** {icon} {status.title()}\n\n"

    metrics = state.get("metrics") or {}
    if metrics:
        summary += "| Metric | Value |\n|--------|-------|\n"
        summary += f"| Jobs | {metrics.get('total_jobs', 0)} ({metrics.get('hardware_store_jobs', 0)} store runs) |\n"
        summary += f"| Distance | {metrics.get('total_distance_km', 0)} km |\n"
        summary += f"| Shopping items | {metrics.get('shopping_items', 0)} |\n"
        summary += f"| Stock alerts | {metrics.get('alerts', 0)} |\n"
        summary += f"| Attempts | {metrics.get('retry_count', 0) + 1} |\n\n"

    if status == "error":
        summary += format_error(state.get("last_error")) + "\n\n"
        return summary

    if state.get("route_output"):
        summary += "### Route\n\n" + format_waypoint_table(state["route_output"]) + "\n"
    if state.get("inventory_output"):
        summary += "### Shopping List\n\n" + format_shopping_list(state["inventory_output"]) + "\n"
        alerts = state["inventory_output"].get("inventory_alerts") or []
        if alerts:
            summary += "### Stock Alerts\n\n" + format_inventory_alerts(alerts) + "\n"

    return summary


def format_approval_request(payload: dict) -> str:
    """Card for a paused run: the stage output awaiting sign-off."""
    stage = payload.get("stage") or "stage"
    output = payload.get("output") or {}
    card = f"## Approval needed: {stage.title()}\n\nPlan for **{payload.get('plan_date', '')}**\n\n"

    if stage == "dispatch":
        card += format_dispatch_table(output)
    elif stage == "route":
        card += format_waypoint_table(output)
    elif stage == "inventory":
        card += format_shopping_list(output)
        alerts = output.get("inventory_alerts") or []
        if alerts:
            card += "\n" + format_inventory_alerts(alerts)

    reasoning = output.get("agent_reasoning")
    if reasoning:
        card += f"\n\n> {reasoning}\n"
    return card
