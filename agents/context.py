"""
Stage Context
=============
PlanContext identifies one planning run. PlanningServices bundles every
collaborator a stage may call; the entry point builds it once and passes it
to the graph through config["configurable"]["services"].
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

from config.settings import ROUTING
from services.inventory import InventoryService
from services.jobs import JobService
from services.llm_service import LLMService
from services.plans import PlanService
from services.errors import StageFailure, create_error_state
from services.preferences import PreferencesService, merge_preferences
from tools.routing import EstimatedRouteSolver, RouteSolver, VroomRouteSolver
from tools.supplier import MockSupplierCatalog, SupplierCatalog

logger = logging.getLogger(__name__)


@dataclass
class PlanContext:
    user_id: str
    plan_id: str
    job_ids: list[str]
    plan_date: str
    preference_overrides: Optional[dict] = field(default=None)


@dataclass
class PlanningServices:
    llm: LLMService
    plans: PlanService
    jobs: JobService
    inventory: InventoryService
    preferences: PreferencesService
    route_solver: RouteSolver
    supplier_catalog: SupplierCatalog


def build_services(db, llm: Optional[LLMService] = None) -> PlanningServices:
    """Production wiring over one DatabaseService."""
    if ROUTING["engine"] == "vroom":
        route_solver = VroomRouteSolver()
    else:
        route_solver = EstimatedRouteSolver()

    return PlanningServices(
        llm=llm or LLMService(),
        plans=PlanService(db),
        jobs=JobService(db),
        inventory=InventoryService(db),
        preferences=PreferencesService(db),
        route_solver=route_solver,
        supplier_catalog=MockSupplierCatalog(),
    )


def get_services(config: dict) -> PlanningServices:
    services = config.get("configurable", {}).get("services")
    if services is None:
        raise RuntimeError("PlanningServices missing from config['configurable']['services']")
    return services


def context_from_state(state: dict) -> PlanContext:
    return PlanContext(
        user_id=state["user_id"],
        plan_id=state["plan_id"],
        job_ids=list(state.get("job_ids") or []),
        plan_date=state["plan_date"],
        preference_overrides=state.get("preference_overrides"),
    )


async def load_preferences(services: PlanningServices, ctx: PlanContext) -> dict:
    """Stored preferences merged over defaults, then this run's overrides."""
    stored = await services.preferences.get_user_preferences(ctx.user_id)
    return merge_preferences(stored, ctx.preference_overrides)


@asynccontextmanager
async def stage_boundary(services: PlanningServices, ctx: PlanContext, step: str):
    """
    Wrap a stage body. Any exception is written to the plan as an error state
    with retry_suggested set, then re-raised as StageFailure for the graph node.
    The StageFailure is raised even when the error state cannot be written.
    """
    try:
        yield
    except StageFailure:
        raise
    except Exception as exc:
        error_state = create_error_state(step, exc)
        logger.error(
            f"{step} stage failed for plan {ctx.plan_id} "
            f"({error_state['error_type']}): {error_state['error_message']}",
            exc_info=True,
        )
        try:
            await services.plans.mark_error(ctx.plan_id, error_state)
        except Exception as persist_exc:
            logger.error(
                f"Could not record the {step} failure on plan {ctx.plan_id}: {persist_exc}",
                exc_info=True,
            )
            error_state["diagnostic_info"] = {
                **(error_state.get("diagnostic_info") or {}),
                "error_state_not_saved": str(persist_exc),
            }
        raise StageFailure(error_state) from exc


async def notify(config: dict, agent_key: str, text: Any) -> None:
    """Forward a status line to the UI callback when one is configured."""
    agent_callback = config.get("configurable", {}).get("agent_callback")
    if agent_callback:
        await agent_callback(agent_key, str(text))
