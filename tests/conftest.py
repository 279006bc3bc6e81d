from __future__ import annotations

import pytest

from agents.context import PlanningServices
from fakes import (
    FakeInventoryService,
    FakeJobService,
    FakeLLM,
    FakePlanService,
    FakePreferencesService,
    llm_reply,
    sample_inventory,
    sample_jobs,
)
from tools.routing import EstimatedRouteSolver
from tools.supplier import MockSupplierCatalog


@pytest.fixture
def make_services():
    """Factory for PlanningServices wired to in-memory fakes."""

    def factory(**overrides) -> PlanningServices:
        parts = {
            "llm": FakeLLM(llm_reply(["job-b", "job-c", "job-a"])),
            "plans": FakePlanService(),
            "jobs": FakeJobService(sample_jobs()),
            "inventory": FakeInventoryService(sample_inventory()),
            "preferences": FakePreferencesService(),
            "route_solver": EstimatedRouteSolver(),
            "supplier_catalog": MockSupplierCatalog(seed=7),
        }
        parts.update(overrides)
        return PlanningServices(**parts)

    return factory
