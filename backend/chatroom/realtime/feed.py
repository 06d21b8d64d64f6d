from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, FrozenSet, List, Optional

MESSAGES = "messages"
PRESENCE = "presence"


class ChangeKind(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    table: str
    row: Any


@dataclass(eq=False)
class Subscription:
    tables: Optional[FrozenSet[str]]
    queue: "asyncio.Queue[ChangeEvent]" = field(default_factory=asyncio.Queue)
    closed: bool = False

    def wants(self, event: ChangeEvent) -> bool:
        return not self.closed and (self.tables is None or event.table in self.tables)

    def pending(self) -> int:
        return self.queue.qsize()

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        while not self.closed:
            yield await self.queue.get()


class ChangeFeed:
    """Fans out committed row changes to every subscriber, in publish order."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def subscribe(self, tables: Optional[FrozenSet[str]] = None) -> Subscription:
        subscription = Subscription(tables=frozenset(tables) if tables is not None else None)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.wants(event):
                subscription.queue.put_nowait(event)

    def subscriber_count(self) -> int:
        return len(self._subscriptions)
