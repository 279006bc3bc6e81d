"""
Workflow State Machine
======================
The planning workflow as an explicit finite-state machine.

    dispatch -> route -> inventory -> [hardware_store_creation] -> complete -> end
    any stage --failed--> error_handler --retry--> dispatch
                                       --retries_exhausted--> end
    dispatch/route/inventory --approval_requested--> human_verification
    human_verification --approved--> (the step that was about to run)
                       --rejected--> end

Nodes compute their successor with transition() and append a
TransitionRecord to the state's transitions log.
"""

from enum import Enum
from typing import Optional

from langgraph.graph import END
from typing_extensions import TypedDict

from services.errors import InvalidTransition, utc_now_iso


class WorkflowStep(str, Enum):
    DISPATCH = "dispatch"
    ROUTE = "route"
    INVENTORY = "inventory"
    HARDWARE_STORE_CREATION = "hardware_store_creation"
    HUMAN_VERIFICATION = "human_verification"
    COMPLETE = "complete"
    ERROR_HANDLER = "error_handler"
    END = END


class WorkflowEvent(str, Enum):
    COMPLETED = "completed"
    STORE_RUN_PLANNED = "store_run_planned"
    FAILED = "failed"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETRY = "retry"
    RETRIES_EXHAUSTED = "retries_exhausted"


STAGES = (
    WorkflowStep.DISPATCH,
    WorkflowStep.ROUTE,
    WorkflowStep.INVENTORY,
    WorkflowStep.HARDWARE_STORE_CREATION,
    WorkflowStep.COMPLETE,
)
APPROVABLE_STAGES = (WorkflowStep.DISPATCH, WorkflowStep.ROUTE, WorkflowStep.INVENTORY)
RESUMABLE_STEPS = (
    WorkflowStep.ROUTE,
    WorkflowStep.INVENTORY,
    WorkflowStep.HARDWARE_STORE_CREATION,
    WorkflowStep.COMPLETE,
)

TRANSITIONS: dict[tuple[WorkflowStep, WorkflowEvent], WorkflowStep] = {
    (WorkflowStep.DISPATCH, WorkflowEvent.COMPLETED): WorkflowStep.ROUTE,
    (WorkflowStep.ROUTE, WorkflowEvent.COMPLETED): WorkflowStep.INVENTORY,
    (WorkflowStep.INVENTORY, WorkflowEvent.COMPLETED): WorkflowStep.COMPLETE,
    (WorkflowStep.INVENTORY, WorkflowEvent.STORE_RUN_PLANNED): WorkflowStep.HARDWARE_STORE_CREATION,
    (WorkflowStep.HARDWARE_STORE_CREATION, WorkflowEvent.COMPLETED): WorkflowStep.COMPLETE,
    (WorkflowStep.COMPLETE, WorkflowEvent.COMPLETED): WorkflowStep.END,
    (WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRY): WorkflowStep.DISPATCH,
    (WorkflowStep.ERROR_HANDLER, WorkflowEvent.RETRIES_EXHAUSTED): WorkflowStep.END,
    (WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.REJECTED): WorkflowStep.END,
    (WorkflowStep.HUMAN_VERIFICATION, WorkflowEvent.FAILED): WorkflowStep.ERROR_HANDLER,
    **{(stage, WorkflowEvent.FAILED): WorkflowStep.ERROR_HANDLER for stage in STAGES},
    **{
        (stage, WorkflowEvent.APPROVAL_REQUESTED): WorkflowStep.HUMAN_VERIFICATION
        for stage in APPROVABLE_STAGES
    },
}

# Sign-off tag keyed by the step the workflow was about to enter
APPROVAL_TAGS = {
    WorkflowStep.ROUTE: "dispatch_approval",
    WorkflowStep.INVENTORY: "route_approval",
    WorkflowStep.HARDWARE_STORE_CREATION: "inventory_approval",
    WorkflowStep.COMPLETE: "inventory_approval",
}


class TransitionRecord(TypedDict):
    source: str
    event: str
    target: str
    at: str


def transition(
    step: WorkflowStep | str,
    event: WorkflowEvent | str,
    resume_step: Optional[WorkflowStep | str] = None,
) -> WorkflowStep:
    """
    Successor of step on event. Approval resumes at resume_step, which must be
    a step that can follow a verified stage.
    """
    step, event = WorkflowStep(step), WorkflowEvent(event)

    if step is WorkflowStep.HUMAN_VERIFICATION and event is WorkflowEvent.APPROVED:
        if resume_step is None or WorkflowStep(resume_step) not in RESUMABLE_STEPS:
            raise InvalidTransition(f"Approval cannot resume at {resume_step!r}")
        return WorkflowStep(resume_step)

    try:
        return TRANSITIONS[(step, event)]
    except KeyError:
        raise InvalidTransition(f"No transition from {step.value} on {event.value}") from None


def record(source: WorkflowStep | str, event: WorkflowEvent | str, target: WorkflowStep | str) -> TransitionRecord:
    return {
        "source": WorkflowStep(source).value,
        "event": WorkflowEvent(event).value,
        "target": WorkflowStep(target).value,
        "at": utc_now_iso(),
    }


def approval_step_for(next_step: Optional[WorkflowStep | str]) -> str:
    if next_step is None:
        return "none"
    try:
        return APPROVAL_TAGS.get(WorkflowStep(next_step), "none")
    except ValueError:
        return "none"
