"""
LLM Service
============
Thin OpenAI chat-completion wrapper used by the dispatcher stage.

The service owns its client and model table; stages receive an instance
through PlanningServices instead of reaching for a module-level client.
"""

import logging
from typing import Optional

from openai import AsyncOpenAI

from config.settings import MODELS

logger = logging.getLogger(__name__)


class LLMService:
    """Chat-completion client bound to one OpenAI client and a model table."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, models: Optional[dict] = None):
        self._client = client
        self.models = models or MODELS

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily so tests and the fallback path never need an API key
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    def _request(self, messages: list[dict], overrides: dict) -> dict:
        request = {
            "model": overrides.get("model") or self.models["main"],
            "messages": messages,
            "temperature": self.models["temperature"],
            "max_tokens": overrides.get("max_tokens") or self.models["max_tokens"],
        }
        if overrides.get("temperature") is not None:
            request["temperature"] = overrides["temperature"]
        if overrides.get("response_format"):
            request["response_format"] = overrides["response_format"]
        return request

    async def chat(self, messages: list[dict], **overrides) -> dict:
        """
        Run one chat completion and return its text plus token usage.

        Accepted overrides: model, temperature, max_tokens, response_format
        (e.g. {"type": "json_object"} for the dispatcher's structured reply).
        """
        request = self._request(messages, overrides)
        completion = await self.client.chat.completions.create(**request)

        choice = completion.choices[0].message
        usage = completion.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        logger.debug(f"LLM call model={request['model']} tokens={prompt_tokens}+{completion_tokens}")

        return {
            "content": choice.content or "",
            "role": choice.role,
            "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        }
