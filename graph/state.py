"""
Graph State Schema
==================
Defines the PlanningState TypedDict - the shared state contract between
the workflow nodes in the LangGraph orchestration.
"""

import operator
from typing import Annotated, Optional

from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class PlanningState(TypedDict):
    """
    Shared state for one daily-planning run.
    Nodes return partial updates; transitions accumulates across the run.
    """

    # ---- Message History (stage summaries for the UI) ----
    messages: Annotated[list, add_messages]

    # ---- Run Context ----
    user_id: str
    plan_id: str
    plan_date: str                              # YYYY-MM-DD
    job_ids: list[str]                          # Jobs the user asked to plan
    preference_overrides: Optional[dict]        # Per-run preference overrides
    started_at: str                             # ISO timestamp of workflow start

    # ---- Routing / Control ----
    current_step: str                           # Next step to run (WorkflowStep value)
    error: Optional[dict]                       # Error state from a failed stage
    last_error: Optional[dict]                  # Most recent error state, kept after handling
    is_complete: bool                           # Run finished (approved, cancelled or failed)
    awaiting_human_approval: bool               # Next hop is human_verification
    approval_step: str                          # dispatch_approval / route_approval / inventory_approval / none
    approval_checkpoints: list[str]             # Stages whose output needs sign-off
    retry_count: int                            # Failed attempts so far
    max_retries: int

    # ---- Stage Outputs ----
    dispatch_output: Optional[dict]
    route_output: Optional[dict]
    inventory_output: Optional[dict]
    created_job_ids: list[str]                  # Jobs created during the run

    # ---- Result ----
    final_status: Optional[str]                 # approved / cancelled / error
    metrics: Optional[dict]

    # ---- Side-effect log ----
    transitions: Annotated[list, operator.add]
