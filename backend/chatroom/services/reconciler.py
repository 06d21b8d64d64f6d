from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

from chatroom.crypto.codec import DECRYPT_FAILED, adecrypt_message, aencrypt_message
from chatroom.crypto.kdf import KdfParams
from chatroom.db.store import ChatStore, MessageRow
from chatroom.realtime.feed import MESSAGES, ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptedView:
    row: MessageRow
    display_text: str

    @property
    def id(self) -> str:
        return self.row.id

    @property
    def author(self) -> str:
        return self.row.author

    @property
    def is_assistant(self) -> bool:
        return self.row.is_assistant

    @property
    def created_at(self) -> datetime:
        return self.row.created_at

    @property
    def readable(self) -> bool:
        return self.row.is_assistant or self.display_text != DECRYPT_FAILED


class SyncReconciler:
    """
    Canonical, decrypted message list for one session.

    Entries are keyed by message id and kept in load order followed by event
    arrival order. Every mutation is an upsert or delete by id, so replaying
    or interleaving change notifications converges to the same list.
    """

    def __init__(self, store: ChatStore, passphrase: str, *, params: KdfParams | None = None) -> None:
        self.store = store
        self._passphrase = passphrase
        self._params = params
        self._views: "OrderedDict[str, DecryptedView]" = OrderedDict()

    async def _view(self, row: MessageRow) -> DecryptedView:
        if row.is_assistant:
            return DecryptedView(row=row, display_text=row.payload)
        text = await adecrypt_message(row.payload, self._passphrase, self._params)
        return DecryptedView(row=row, display_text=text)

    async def load(self, rows: Iterable[MessageRow]) -> None:
        rows = list(rows)
        # gather keeps input order; a failed decrypt only yields the sentinel for that row
        views = await asyncio.gather(*(self._view(r) for r in rows))
        self._views = OrderedDict((v.id, v) for v in views)
        logger.debug("Loaded %d messages", len(self._views))

    async def apply_insert(self, row: MessageRow) -> bool:
        if row.id in self._views:
            return False
        view = await self._view(row)
        # a duplicate delivery may have landed while we were decrypting
        if row.id in self._views:
            return False
        self._views[row.id] = view
        return True

    async def apply_update(self, row: MessageRow) -> bool:
        if row.id not in self._views:
            return False
        view = await self._view(row)
        # deleted while decrypting
        if row.id not in self._views:
            return False
        self._views[row.id] = view
        return True

    def apply_delete(self, message_id: str) -> bool:
        return self._views.pop(message_id, None) is not None

    async def apply(self, event: ChangeEvent) -> bool:
        if event.table != MESSAGES:
            return False
        if event.kind is ChangeKind.INSERT:
            return await self.apply_insert(event.row)
        if event.kind is ChangeKind.UPDATE:
            return await self.apply_update(event.row)
        if event.kind is ChangeKind.DELETE:
            return self.apply_delete(event.row.id)
        return False

    async def apply_progress(self, message_id: str, text: str) -> bool:
        """Show partial assistant output locally before the terminal write lands."""
        view = self._views.get(message_id)
        if view is None:
            return False
        return await self.apply_update(replace(view.row, payload=text))

    async def send_local(self, author: str, plaintext: str, passphrase: str) -> MessageRow:
        """
        Encrypt and hand the blob to the store.

        The list is not touched here: the insert notification for this row is
        the only thing that adds it, so the sender never sees it twice.
        """
        blob = await aencrypt_message(plaintext, passphrase, self._params)
        return await self.store.insert_message(author, blob, is_assistant=False)

    def views(self) -> List[DecryptedView]:
        return list(self._views.values())

    def get(self, message_id: str) -> Optional[DecryptedView]:
        return self._views.get(message_id)

    def clear(self) -> None:
        self._views.clear()

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._views
