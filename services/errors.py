"""
Planning Errors
===============
Error taxonomy shared by the stages, the plan store and the error handler node.

Every failure that reaches a plan record is described by an error state dict:
    error_type, error_message, failed_step, timestamp, retry_suggested,
    diagnostic_info
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    AGENT_FAILURE = "agent_failure"            # LLM or parsing failure inside a stage
    VALIDATION_ERROR = "validation_error"      # Missing prerequisite state
    TIMEOUT = "timeout"                        # Stale plan cleanup
    EXTERNAL_API_ERROR = "external_api_error"  # Routing or supplier tool failure


class PlanningError(Exception):
    """Base class for failures raised inside a planning stage."""

    error_type = ErrorType.AGENT_FAILURE

    def __init__(self, step: str, message: str, diagnostic_info: Optional[dict] = None):
        super().__init__(message)
        self.step = step
        self.message = message
        self.diagnostic_info = diagnostic_info or {}


class StageValidationError(PlanningError):
    """A stage was entered without the state it needs."""

    error_type = ErrorType.VALIDATION_ERROR


class ExternalToolError(PlanningError):
    """The route solver or supplier catalog failed."""

    error_type = ErrorType.EXTERNAL_API_ERROR


class InvalidTransition(Exception):
    """The workflow state machine has no edge for a (step, event) pair."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_error_state(
    step: str,
    error: BaseException | str,
    retry_suggested: bool = True,
    error_type: Optional[ErrorType] = None,
    diagnostic_info: Optional[dict] = None,
) -> dict:
    """Build the error state persisted on a plan and carried in workflow state."""
    if isinstance(error, PlanningError):
        kind = error_type or error.error_type
        message = error.message
        diagnostics = {**error.diagnostic_info, **(diagnostic_info or {})}
    elif isinstance(error, BaseException):
        kind = error_type or ErrorType.AGENT_FAILURE
        message = str(error) or error.__class__.__name__
        diagnostics = {
            "exception": error.__class__.__name__,
            "traceback": "".join(traceback.format_exception(error))[-2000:],
            **(diagnostic_info or {}),
        }
    else:
        kind = error_type or ErrorType.AGENT_FAILURE
        message = error
        diagnostics = dict(diagnostic_info or {})

    return {
        "error_type": ErrorType(kind).value,
        "error_message": message,
        "failed_step": step,
        "timestamp": utc_now_iso(),
        "retry_suggested": retry_suggested,
        "diagnostic_info": diagnostics,
    }


class StageFailure(Exception):
    """Raised at a stage boundary after the error state was logged and, when the store allows, saved on the plan."""

    def __init__(self, error_state: dict):
        super().__init__(error_state["error_message"])
        self.error_state = error_state
