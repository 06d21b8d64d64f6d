from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from chatroom.core.config import settings
from chatroom.services.stream_relay import AssistantStreamError, ChatTurn

logger = logging.getLogger(__name__)


class OpenAIChatStream:
    """
    Chat-completions streaming against any OpenAI-compatible endpoint.

    Yields text deltas in arrival order. Provider failures are re-raised as
    AssistantStreamError so the relay can persist a readable error.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        system_prompt: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model_name = model_name or settings.OPENAI_MODEL
        self.system_prompt = system_prompt if system_prompt is not None else settings.assistant_system_prompt

        if client is None:
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            key = api_key or settings.OPENAI_API_KEY
            if key:
                client_kwargs["api_key"] = key
            url = base_url or settings.OPENAI_BASE_URL
            if url:
                client_kwargs["base_url"] = url
            client_kwargs["timeout"] = timeout if timeout is not None else settings.OPENAI_TIMEOUT_SECONDS
            client = AsyncOpenAI(**client_kwargs)
        self._client = client

    def _to_openai_messages(self, history: Sequence[ChatTurn]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        if self.system_prompt:
            out.append({"role": "system", "content": self.system_prompt})
        for turn in history:
            role = turn.role if turn.role in ("system", "assistant") else "user"
            out.append({"role": role, "content": turn.text})
        return out

    async def stream(self, history: Sequence[ChatTurn]) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                model=self.model_name,
                messages=self._to_openai_messages(history),
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except OpenAIError as e:
            raise AssistantStreamError(str(e) or e.__class__.__name__) from e


def build_default_assistant() -> Optional[OpenAIChatStream]:
    """The configured provider, or None when no API key is set (mentions then get no reply)."""
    if not settings.OPENAI_API_KEY:
        logger.info("No OPENAI_API_KEY configured; assistant disabled")
        return None
    return OpenAIChatStream()
