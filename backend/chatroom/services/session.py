from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, List, Optional, Set

from chatroom.core.config import settings
from chatroom.crypto.kdf import KdfParams
from chatroom.db.store import ChatStore, MessageRow, StoreError
from chatroom.realtime.feed import PRESENCE, ChangeEvent, Subscription
from chatroom.security.sanitizer import InputSanitizer
from chatroom.services.assistant import build_default_assistant
from chatroom.services.presence import PresenceManager
from chatroom.services.reconciler import DecryptedView, SyncReconciler
from chatroom.services.stream_relay import ChatStreamProvider, ChatTurn, StreamRelay, StreamRelayError

logger = logging.getLogger(__name__)


class SessionError(Exception):
    pass


class InvalidPassphrase(SessionError):
    pass


class NotJoined(SessionError):
    pass


class ChatSession:
    """
    One connected participant: a claimed name, a room passphrase and the
    decrypted message list, plus the background work that keeps them live
    (change-feed consumer, presence heartbeat, assistant streams).

    Use as an async context manager so the name is released on any exit.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        assistant: Optional[ChatStreamProvider] = None,
        presence: Optional[PresenceManager] = None,
        params: Optional[KdfParams] = None,
        history_limit: Optional[int] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.store = store
        self.presence = presence or PresenceManager(store)
        self.assistant = assistant if assistant is not None else build_default_assistant()
        self.history_limit = settings.assistant_history_limit if history_limit is None else history_limit
        self.on_error = on_error
        self._params = params
        self._mention = re.compile(re.escape(settings.assistant_mention) + r"\s+(.+)", re.IGNORECASE)

        self.name: Optional[str] = None
        self.online_count = 0
        self.reconciler: Optional[SyncReconciler] = None
        self._passphrase: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._relay_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.leave()

    @property
    def joined(self) -> bool:
        return self.name is not None

    @property
    def messages(self) -> List[DecryptedView]:
        return self.reconciler.views() if self.reconciler is not None else []

    def _require_joined(self) -> None:
        if self.name is None or self.reconciler is None:
            raise NotJoined("Join the room first")

    async def join(self, name: str, passphrase: str) -> str:
        if self.joined:
            raise SessionError("Already joined")

        secret = passphrase.strip() if isinstance(passphrase, str) else ""
        if len(secret) < settings.passphrase_min_length:
            raise InvalidPassphrase(
                f"Passphrase must be at least {settings.passphrase_min_length} characters"
            )

        claimed = await self.presence.join(name)
        self.name = claimed
        self._passphrase = secret
        self.reconciler = SyncReconciler(self.store, secret, params=self._params)

        # subscribe before loading so nothing committed in between is missed;
        # inserts that show up in both are absorbed by apply_insert
        self._subscription = self.store.subscribe()
        try:
            await self.reconciler.load(await self.store.select_messages())
        except BaseException:
            await self.leave()
            raise

        self._consumer = asyncio.create_task(self._consume(self._subscription))
        self.presence.start_heartbeat(claimed, self._set_online_count)
        logger.info("%s joined the room", claimed)
        return claimed

    async def send(self, text: str) -> Optional[MessageRow]:
        """
        Encrypt and post a message. A leading-or-inline mention of the
        assistant also starts a streamed reply.

        Returns:
            The stored row, or None when there was nothing to send
        """
        self._require_joined()
        trimmed = InputSanitizer.sanitize_message_text(text, settings.message_max_length)
        if not trimmed:
            return None

        match = self._mention.search(trimmed)
        wants_reply = match is not None and self.assistant is not None
        # context is what was on screen before this message
        history = self._history(match.group(1).strip()) if wants_reply else None

        row = await self.reconciler.send_local(self.name, trimmed, self._passphrase)

        if history is not None:
            await self._trigger_assistant(history)
        return row

    async def _trigger_assistant(self, history: List[ChatTurn]) -> None:
        # assistant rows are plain text: the reply is visible to every passphrase
        placeholder = await self.store.insert_message(
            settings.assistant_name,
            settings.assistant_placeholder,
            is_assistant=True,
        )
        relay = StreamRelay(self.store, self.assistant)
        task = asyncio.create_task(self._run_relay(relay, placeholder.id, history))
        self._relay_tasks.add(task)
        task.add_done_callback(self._relay_tasks.discard)

    def _history(self, prompt: str) -> List[ChatTurn]:
        turns: List[ChatTurn] = []
        if self.history_limit > 0 and self.reconciler is not None:
            recent = [
                v for v in self.reconciler.views()
                if v.readable and v.display_text != settings.assistant_placeholder
            ][-self.history_limit:]
            for v in recent:
                if v.is_assistant:
                    turns.append(ChatTurn(role="assistant", text=v.display_text))
                else:
                    turns.append(ChatTurn(role="user", text=f"{v.author}: {v.display_text}"))
        turns.append(ChatTurn(role="user", text=prompt))
        return turns

    async def _run_relay(self, relay: StreamRelay, message_id: str, history: List[ChatTurn]) -> None:
        async def progress(text: str) -> None:
            if self.reconciler is not None:
                await self.reconciler.apply_progress(message_id, text)

        try:
            await relay.respond(message_id, history, on_progress=progress)
        except (StreamRelayError, StoreError) as e:
            logger.warning("Assistant reply %s failed: %s", message_id, e)
            if self.on_error is not None:
                self.on_error(e)

    async def wait_for_replies(self) -> None:
        if self._relay_tasks:
            await asyncio.gather(*list(self._relay_tasks), return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every change notification received so far has been applied."""
        if self._subscription is not None and self._consumer is not None:
            await self._subscription.queue.join()

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self._handle(event)
            except StoreError:
                logger.warning("Failed to apply %s on %s", event.kind.value, event.table, exc_info=True)
            except Exception:
                logger.exception("Dropped %s on %s", event.kind.value, event.table)
            finally:
                subscription.queue.task_done()

    async def _handle(self, event: ChangeEvent) -> None:
        if event.table == PRESENCE:
            self._set_online_count(await self.presence.online_count())
        elif self.reconciler is not None:
            await self.reconciler.apply(event)

    def _set_online_count(self, count: int) -> None:
        self.online_count = count

    async def leave(self) -> None:
        """
        Tear the session down. Order matters: the heartbeat is stopped before
        the name is released so it cannot fire against a released claim.
        The name is released even if a background task died or teardown fails.
        """
        if self.name is None:
            return
        name = self.name

        try:
            await self.presence.stop_heartbeat()

            if self._relay_tasks:
                # let relay tasks created just now reach their first await, so the
                # cancellation lands inside respond() and gets its terminal write
                await asyncio.sleep(0)
                tasks = list(self._relay_tasks)
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

            if self._consumer is not None:
                consumer, self._consumer = self._consumer, None
                consumer.cancel()
                [outcome] = await asyncio.gather(consumer, return_exceptions=True)
                if isinstance(outcome, Exception):
                    logger.error("Event consumer for %s had failed", name, exc_info=outcome)
        finally:
            if self._subscription is not None:
                self.store.unsubscribe(self._subscription)
                self._subscription = None

            try:
                await self.presence.leave(name)
            finally:
                self.name = None
                self._passphrase = None
                if self.reconciler is not None:
                    self.reconciler.clear()
                self.reconciler = None
                self.online_count = 0
                logger.info("%s left the room", name)
