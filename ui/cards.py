"""
UI Cards
========
Chainlit-specific card builders that create rich interactive displays.
These wrap the formatting_tools output in Chainlit messages and actions.
"""

import chainlit as cl

from config.settings import AGENTS
from tools.formatting_tools import format_approval_request, format_error, format_plan_summary

# Which specialist presents each stage for sign-off
STAGE_AUTHORS = {
    "dispatch": "dispatcher",
    "route": "router",
    "inventory": "inventory",
}


async def display_approval_card(payload: dict) -> None:
    """Show the stage output the run paused on."""
    agent_key = STAGE_AUTHORS.get(payload.get("stage"), "system")
    await cl.Message(
        content=format_approval_request(payload),
        author=AGENTS[agent_key]["name"],
    ).send()


async def ask_approval(timeout: int = 600) -> bool:
    """
    Display approve/reject buttons and wait for the choice.
    No answer within the timeout counts as a rejection.
    """
    actions = [
        cl.Action(
            name="approve_stage",
            payload={"approved": True},
            label="Approve",
            description="Accept this stage and continue planning",
        ),
        cl.Action(
            name="reject_stage",
            payload={"approved": False},
            label="Reject",
            description="Cancel this plan",
        ),
    ]

    response = await cl.AskActionMessage(
        content="**Approval required:** continue with this plan?",
        actions=actions,
        author=AGENTS["system"]["name"],
        timeout=timeout,
    ).send()

    if response:
        return bool(response.get("payload", {}).get("approved"))
    return False


async def display_plan_summary(state: dict) -> None:
    await cl.Message(
        content=format_plan_summary(state),
        author=AGENTS["system"]["name"],
    ).send()


async def display_error(error_state: dict) -> None:
    await cl.Message(
        content=format_error(error_state),
        author=AGENTS["system"]["name"],
    ).send()
