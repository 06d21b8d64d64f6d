from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, Sequence

from chatroom.db.store import ChatStore

logger = logging.getLogger(__name__)

FAILED_RESPONSE_TEXT = "Failed to get AI response."
CANCELLED_RESPONSE_TEXT = "Error: response cancelled"


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" | "assistant" | "system"
    text: str


class AssistantStreamError(Exception):
    """The provider reported a failure; the message is safe to show to users."""


class StreamRelayError(Exception):
    def __init__(self, message_id: str, message: str) -> None:
        super().__init__(message)
        self.message_id = message_id


class ChatStreamProvider(Protocol):
    def stream(self, history: Sequence[ChatTurn]) -> AsyncIterator[str]: ...


ProgressCallback = Callable[[str], Awaitable[None]]


class StreamRelay:
    """Drives one assistant response and writes exactly one terminal update for it."""

    def __init__(self, store: ChatStore, provider: ChatStreamProvider) -> None:
        self.store = store
        self.provider = provider

    async def respond(
        self,
        message_id: str,
        history: Sequence[ChatTurn],
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Stream a reply into the assistant message ``message_id``.

        Each chunk is appended to the running text and the running text is
        passed to ``on_progress``. When the stream ends the full text is
        persisted. On failure an error string is persisted instead and
        StreamRelayError is raised; on cancellation a cancellation notice is
        persisted and the CancelledError propagates.

        Returns:
            The persisted response text
        """
        full_response = ""
        try:
            async for chunk in self.provider.stream(history):
                if not chunk:
                    continue
                full_response += chunk
                if on_progress is not None:
                    await on_progress(full_response)
        except asyncio.CancelledError:
            logger.info("Assistant response %s cancelled", message_id)
            await self.store.update_message(message_id, CANCELLED_RESPONSE_TEXT)
            raise
        except AssistantStreamError as e:
            logger.warning("Assistant stream for %s failed: %s", message_id, e)
            await self.store.update_message(message_id, f"Error: {e}")
            raise StreamRelayError(message_id, str(e)) from e
        except Exception as e:
            logger.exception("Assistant stream for %s crashed", message_id)
            await self.store.update_message(message_id, FAILED_RESPONSE_TEXT)
            raise StreamRelayError(message_id, FAILED_RESPONSE_TEXT) from e

        await self.store.update_message(message_id, full_response)
        return full_response
