"""
Graph Builder
=============
Constructs the LangGraph StateGraph, wires all nodes through the shared
router, and compiles with an in-memory or PostgreSQL checkpointer.
"""

import logging

from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
from langgraph.graph import END, START, StateGraph
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from config.settings import DATABASE
from graph.edges import route_workflow
from graph.machine import WorkflowStep
from graph.nodes import (
    complete_node,
    dispatch_node,
    error_handler_node,
    hardware_store_creation_node,
    human_verification_node,
    inventory_node,
    route_node,
)
from graph.state import PlanningState

logger = logging.getLogger(__name__)

NODES = {
    WorkflowStep.DISPATCH: dispatch_node,
    WorkflowStep.ROUTE: route_node,
    WorkflowStep.INVENTORY: inventory_node,
    WorkflowStep.HARDWARE_STORE_CREATION: hardware_store_creation_node,
    WorkflowStep.HUMAN_VERIFICATION: human_verification_node,
    WorkflowStep.COMPLETE: complete_node,
    WorkflowStep.ERROR_HANDLER: error_handler_node,
}


def build_graph() -> StateGraph:
    """
    Build the daily planning StateGraph (uncompiled).

    Graph topology:
        START -> dispatch
        every node -> route_workflow -> {any node, END}
    """
    graph = StateGraph(PlanningState)

    # ---- Add Nodes ----
    for step, node in NODES.items():
        graph.add_node(step.value, node)

    # ---- Entry Edge ----
    graph.add_edge(START, WorkflowStep.DISPATCH.value)

    # ---- Conditional Edges ----
    destinations = {step.value: step.value for step in NODES}
    destinations[END] = END
    for step in NODES:
        graph.add_conditional_edges(step.value, route_workflow, destinations)

    return graph


def compile_graph(checkpointer=None):
    """Compile with the given checkpointer, defaulting to an in-memory one."""
    compiled = build_graph().compile(checkpointer=checkpointer or MemorySaver())
    logger.info("Daily planning graph compiled")
    return compiled


async def compile_postgres_graph(db_uri: str):
    """
    Compile the graph with a PostgreSQL-backed checkpointer.

    Args:
        db_uri: PostgreSQL connection URI

    Returns:
        (compiled graph, connection pool); close the pool on shutdown
    """
    pool = AsyncConnectionPool(
        conninfo=db_uri,
        min_size=DATABASE["min_connections"],
        max_size=DATABASE["max_connections"],
        kwargs={"autocommit": True, "prepare_threshold": 0, "row_factory": dict_row},
        open=False,
    )
    await pool.open()

    checkpointer = AsyncPostgresSaver(pool)
    await checkpointer.setup()

    compiled = build_graph().compile(checkpointer=checkpointer)
    logger.info("Daily planning graph compiled with PostgreSQL checkpointer")
    return compiled, pool
