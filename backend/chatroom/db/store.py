"""
Async store facade over the SQLAlchemy CRUD layer.

Every committed write is published on a ChangeFeed as a row-level
INSERT/UPDATE/DELETE event, which is how connected sessions learn about
messages and presence changes made by anyone in the room.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, FrozenSet, List, Optional, Protocol, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatroom.crud import messages as message_crud
from chatroom.crud import presence as presence_crud
from chatroom.models.message import ChatMessage
from chatroom.models.presence import PresenceRecord
from chatroom.realtime.feed import (
    MESSAGES,
    PRESENCE,
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    Subscription,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """A store read or write failed."""


class NameConflict(StoreError):
    """Insert refused by the uniqueness constraint on presence names."""


@dataclass(frozen=True)
class MessageRow:
    id: str
    author: str
    payload: str
    is_assistant: bool
    created_at: datetime

    @classmethod
    def from_model(cls, m: ChatMessage) -> "MessageRow":
        return cls(
            id=m.id,
            author=m.author,
            payload=m.payload,
            is_assistant=m.is_assistant,
            created_at=m.created_at,
        )


@dataclass(frozen=True)
class PresenceRow:
    name: str
    last_seen_at: datetime

    @classmethod
    def from_model(cls, p: PresenceRecord) -> "PresenceRow":
        return cls(name=p.name, last_seen_at=p.last_seen_at)


class ChatStore(Protocol):
    async def select_messages(self) -> List[MessageRow]: ...

    async def insert_message(self, author: str, payload: str, is_assistant: bool = False) -> MessageRow: ...

    async def update_message(self, message_id: str, payload: str) -> Optional[MessageRow]: ...

    async def delete_message(self, message_id: str) -> Optional[MessageRow]: ...

    async def select_presence(self, name: str) -> Optional[PresenceRow]: ...

    async def insert_presence(self, name: str) -> PresenceRow: ...

    async def touch_presence(self, name: str) -> Optional[PresenceRow]: ...

    async def delete_presence(self, name: str) -> Optional[PresenceRow]: ...

    async def count_presence(self, since: Optional[datetime] = None) -> int: ...

    def subscribe(self, tables: Optional[FrozenSet[str]] = None) -> Subscription: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...


class SqlChatStore:
    """
    ChatStore over a SQLAlchemy ``sessionmaker``.

    The CRUD functions are synchronous, so each call runs in a worker thread
    and the event loop keeps serving other sessions meanwhile. Calls are
    serialized on one lock: a single connection may back every session
    (sqlite with StaticPool).
    """

    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed | None = None) -> None:
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self.feed = feed or ChangeFeed()

    def _locked(self, fn: Callable[[Session], T]) -> T:
        with self._lock:
            with self._session_factory() as db:
                return fn(db)

    async def _run(self, fn: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._locked, fn)

    def _publish(self, kind: ChangeKind, table: str, row) -> None:
        self.feed.publish(ChangeEvent(kind=kind, table=table, row=row))

    # --- messages ---

    async def select_messages(self) -> List[MessageRow]:
        def work(db: Session) -> List[MessageRow]:
            return [MessageRow.from_model(m) for m in message_crud.list_messages(db)]

        try:
            return await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to load messages") from e

    async def insert_message(self, author: str, payload: str, is_assistant: bool = False) -> MessageRow:
        def work(db: Session) -> MessageRow:
            return MessageRow.from_model(message_crud.create_message(db, author, payload, is_assistant))

        try:
            row = await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to store message") from e
        self._publish(ChangeKind.INSERT, MESSAGES, row)
        return row

    async def update_message(self, message_id: str, payload: str) -> Optional[MessageRow]:
        def work(db: Session) -> Optional[MessageRow]:
            m = message_crud.update_payload(db, message_id, payload)
            return MessageRow.from_model(m) if m is not None else None

        try:
            row = await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to update message") from e
        if row is not None:
            self._publish(ChangeKind.UPDATE, MESSAGES, row)
        return row

    async def delete_message(self, message_id: str) -> Optional[MessageRow]:
        def work(db: Session) -> Optional[MessageRow]:
            m = message_crud.get_message(db, message_id)
            if m is None:
                return None
            # snapshot before the delete expires the instance
            row = MessageRow.from_model(m)
            message_crud.delete_message(db, m)
            return row

        try:
            row = await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to delete message") from e
        if row is not None:
            self._publish(ChangeKind.DELETE, MESSAGES, row)
        return row

    # --- presence ---

    async def select_presence(self, name: str) -> Optional[PresenceRow]:
        def work(db: Session) -> Optional[PresenceRow]:
            p = presence_crud.get_by_name(db, name)
            return PresenceRow.from_model(p) if p is not None else None

        try:
            return await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to read presence") from e

    async def insert_presence(self, name: str) -> PresenceRow:
        def work(db: Session) -> PresenceRow:
            return PresenceRow.from_model(presence_crud.create_presence(db, name))

        try:
            row = await self._run(work)
        except IntegrityError as e:
            raise NameConflict(name) from e
        except SQLAlchemyError as e:
            raise StoreError("Failed to claim name") from e
        self._publish(ChangeKind.INSERT, PRESENCE, row)
        return row

    async def touch_presence(self, name: str) -> Optional[PresenceRow]:
        def work(db: Session) -> Optional[PresenceRow]:
            p = presence_crud.touch_presence(db, name)
            return PresenceRow.from_model(p) if p is not None else None

        try:
            row = await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to update presence") from e
        if row is not None:
            self._publish(ChangeKind.UPDATE, PRESENCE, row)
        return row

    async def delete_presence(self, name: str) -> Optional[PresenceRow]:
        def work(db: Session) -> Optional[PresenceRow]:
            p = presence_crud.get_by_name(db, name)
            if p is None:
                return None
            row = PresenceRow.from_model(p)
            presence_crud.delete_presence(db, p)
            return row

        try:
            row = await self._run(work)
        except SQLAlchemyError as e:
            raise StoreError("Failed to release name") from e
        if row is not None:
            self._publish(ChangeKind.DELETE, PRESENCE, row)
        return row

    async def count_presence(self, since: Optional[datetime] = None) -> int:
        try:
            return await self._run(lambda db: presence_crud.count_presence(db, since=since))
        except SQLAlchemyError as e:
            raise StoreError("Failed to count presence") from e

    # --- change notifications ---

    def subscribe(self, tables: Optional[FrozenSet[str]] = None) -> Subscription:
        return self.feed.subscribe(tables)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.feed.unsubscribe(subscription)


_store: SqlChatStore | None = None


def get_store() -> SqlChatStore:
    """Process-wide store used by the HTTP app."""
    global _store
    if _store is None:
        from chatroom.db.session import SessionLocal

        _store = SqlChatStore(SessionLocal)
        logger.info("Chat store initialised")
    return _store
