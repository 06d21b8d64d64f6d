from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from chatroom.core.config import settings
from chatroom.db.store import ChatStore, NameConflict, StoreError
from chatroom.security.sanitizer import InputSanitizer

logger = logging.getLogger(__name__)


class PresenceError(Exception):
    pass


class InvalidName(PresenceError):
    pass


class ReservedName(InvalidName):
    pass


class NameTaken(PresenceError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceManager:
    """
    Exclusive display-name claims plus a heartbeat that keeps the claim fresh.

    The store's uniqueness constraint is the only real guard on a name: the
    lookup before the insert just saves a round trip in the common case and
    cannot stop two joiners that both pass it at the same time.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        reserved_names: Optional[Iterable[str]] = None,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        stale_after: Optional[float] = None,
        now_func: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        names = settings.reserved_names if reserved_names is None else reserved_names
        self.reserved_names = frozenset(n.strip().lower() for n in names)
        self.min_length = settings.username_min_length if min_length is None else min_length
        self.max_length = settings.username_max_length if max_length is None else max_length
        self.heartbeat_interval = (
            settings.heartbeat_interval_seconds if heartbeat_interval is None else heartbeat_interval
        )
        self.stale_after = settings.presence_stale_after_seconds if stale_after is None else stale_after
        self._now = now_func
        self._heartbeat_task: asyncio.Task | None = None
        self._heartbeat_name: str | None = None

    def validate_name(self, name: str) -> str:
        trimmed = name.strip() if isinstance(name, str) else name
        if isinstance(trimmed, str) and trimmed.lower() in self.reserved_names:
            raise ReservedName("This username is reserved")
        try:
            return InputSanitizer.sanitize_display_name(trimmed, self.min_length, self.max_length)
        except ValueError as e:
            raise InvalidName(str(e)) from e

    async def join(self, name: str) -> str:
        """
        Claim a display name.

        Returns:
            The claimed (trimmed) name

        Raises:
            ReservedName: name is on the denylist (any case)
            InvalidName: name is out of bounds or contains control characters
            NameTaken: someone holds the name, or won the insert race
        """
        claimed = self.validate_name(name)

        if await self.store.select_presence(claimed) is not None:
            raise NameTaken("Username already taken")

        try:
            await self.store.insert_presence(claimed)
        except NameConflict as e:
            raise NameTaken("Username already taken") from e

        logger.info("Name claimed: %s", claimed)
        return claimed

    async def heartbeat(self, name: str) -> bool:
        row = await self.store.touch_presence(name)
        if row is None:
            logger.warning("Heartbeat for %s found no presence record", name)
            return False
        return True

    async def online_count(self) -> int:
        if self.stale_after is None:
            return await self.store.count_presence()
        since = self._now() - timedelta(seconds=self.stale_after)
        return await self.store.count_presence(since=since)

    def start_heartbeat(self, name: str, on_tick: Callable[[int], None] | None = None) -> None:
        if self._heartbeat_task is not None:
            raise RuntimeError("Heartbeat already running")
        self._heartbeat_name = name
        self._heartbeat_task = asyncio.create_task(self._beat(name, on_tick))

    async def stop_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            return
        task, self._heartbeat_task = self._heartbeat_task, None
        self._heartbeat_name = None
        task.cancel()
        [outcome] = await asyncio.gather(task, return_exceptions=True)
        if isinstance(outcome, Exception):
            logger.error("Heartbeat task had failed", exc_info=outcome)

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    async def _beat(self, name: str, on_tick: Callable[[int], None] | None) -> None:
        try:
            while True:
                try:
                    await self.heartbeat(name)
                    count = await self.online_count()
                    if on_tick is not None:
                        on_tick(count)
                except StoreError:
                    logger.warning("Heartbeat for %s failed", name, exc_info=True)
                except Exception:
                    logger.exception("Heartbeat tick for %s failed", name)
                await asyncio.sleep(self.heartbeat_interval)
        except asyncio.CancelledError:
            return

    async def leave(self, name: str) -> bool:
        """Release a name. The heartbeat for it is stopped first so it cannot re-touch the row."""
        if self._heartbeat_name == name:
            await self.stop_heartbeat()
        row = await self.store.delete_presence(name)
        if row is not None:
            logger.info("Name released: %s", name)
        return row is not None
