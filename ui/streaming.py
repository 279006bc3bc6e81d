"""
Streaming Helpers
==================
Relays workflow status lines into Chainlit as they happen.

Each stage speaks under its own author; consecutive lines from the same
author are appended to one open message, and a change of author closes it.
"""

import asyncio
from typing import Optional

import chainlit as cl

from config.settings import AGENTS, UI


def _author(agent_key: str) -> str:
    return AGENTS.get(agent_key, AGENTS["system"])["name"]


class StreamManager:
    """Holds the one open message of a chat session."""

    def __init__(self, delay_ms: Optional[int] = None):
        self._open: Optional[cl.Message] = None
        self._open_for: Optional[str] = None
        self._delay = (UI.get("streaming_delay_ms", 15) if delay_ms is None else delay_ms) / 1000

    async def _message_for(self, agent_key: str) -> cl.Message:
        if self._open is not None and self._open_for == agent_key:
            return self._open
        await self.finalize()
        self._open = cl.Message(content="", author=_author(agent_key))
        self._open_for = agent_key
        await self._open.send()
        return self._open

    async def stream_token(self, token: str, agent_key: str = "system") -> None:
        message = await self._message_for(agent_key)
        await message.stream_token(token)
        if self._delay > 0:
            await asyncio.sleep(self._delay)

    async def stream_line(self, text: str, agent_key: str = "system") -> None:
        """Stream one status line, a word at a time, then a paragraph break."""
        words = text.split(" ")
        for index, word in enumerate(words):
            await self.stream_token(word if index == len(words) - 1 else word + " ", agent_key)
        await self.stream_token("\n\n", agent_key)

    async def finalize(self) -> None:
        if self._open is None:
            return
        message, self._open, self._open_for = self._open, None, None
        await message.update()

    async def send_message(self, content: str, agent_key: str = "system") -> cl.Message:
        """Close any open stream and post a complete message."""
        await self.finalize()
        message = cl.Message(content=content, author=_author(agent_key))
        await message.send()
        return message


def create_agent_callback(stream_manager: StreamManager):
    """
    Build the agent_callback that graph nodes find in config["configurable"].

    Nodes call it as ``await agent_callback("router", "Optimizing 4 stops")``.
    """

    async def callback(agent_key: str, text: str) -> None:
        await stream_manager.stream_line(text, agent_key)

    return callback
