from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from chatroom.db.store import SqlChatStore, get_store
from chatroom.realtime.feed import MESSAGES, ChangeEvent, Subscription
from chatroom.schemas.message import MessageOut
from chatroom.schemas.presence import PresenceOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=['realtime'])


def event_to_json(event: ChangeEvent) -> dict:
    schema = MessageOut if event.table == MESSAGES else PresenceOut
    return {
        "kind": event.kind.value,
        "table": event.table,
        "row": schema.model_validate(event.row).model_dump(mode="json"),
    }


@router.websocket('/realtime')
async def realtime(websocket: WebSocket, store: SqlChatStore = Depends(get_store)):
    """Push every committed messages/presence change to the connected client."""
    subscription = store.subscribe()
    await websocket.accept()

    async def writer(sub: Subscription) -> None:
        async for event in sub:
            await websocket.send_json(event_to_json(event))

    async def reader() -> None:
        # clients never send anything meaningful; reading is how a disconnect is noticed
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Realtime client disconnected")

    writer_task = asyncio.create_task(writer(subscription))
    reader_task = asyncio.create_task(reader())
    try:
        done, _ = await asyncio.wait({writer_task, reader_task}, return_when=asyncio.FIRST_COMPLETED)
        if writer_task in done and writer_task.exception() is not None:
            logger.error("Realtime push failed", exc_info=writer_task.exception())
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        for task in (writer_task, reader_task):
            task.cancel()
        await asyncio.gather(writer_task, reader_task, return_exceptions=True)
        store.unsubscribe(subscription)
