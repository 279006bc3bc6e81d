"""
Graph Edges
============
The single conditional routing function shared by every node.
It reads the partial state a node just produced and returns the next node.
"""

import logging

from langgraph.graph import END

from graph.machine import WorkflowStep
from graph.state import PlanningState

logger = logging.getLogger(__name__)

NODE_STEPS = {
    WorkflowStep.DISPATCH.value,
    WorkflowStep.ROUTE.value,
    WorkflowStep.INVENTORY.value,
    WorkflowStep.HARDWARE_STORE_CREATION.value,
    WorkflowStep.HUMAN_VERIFICATION.value,
    WorkflowStep.COMPLETE.value,
    WorkflowStep.ERROR_HANDLER.value,
}


def route_workflow(state: PlanningState) -> str:
    """
    Precedence:
        error                   -> error_handler
        is_complete             -> END
        awaiting_human_approval -> human_verification
        otherwise               -> current_step
    """
    if state.get("error"):
        return WorkflowStep.ERROR_HANDLER.value
    if state.get("is_complete"):
        return END
    if state.get("awaiting_human_approval"):
        return WorkflowStep.HUMAN_VERIFICATION.value

    current_step = state.get("current_step")
    if current_step in NODE_STEPS:
        return current_step

    logger.warning(f"Unroutable current_step {current_step!r}, ending run")
    return END
