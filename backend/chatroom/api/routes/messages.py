from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from chatroom.db.store import SqlChatStore, StoreError, get_store
from chatroom.schemas.message import MessageCreateRequest, MessageOut, MessageDeleteResponse


router = APIRouter(prefix='/messages', tags=['messages'])


@router.get('', response_model=List[MessageOut])
async def list_messages(store: SqlChatStore = Depends(get_store)):
    """All messages, oldest first. Payloads are returned as stored (ciphertext)."""
    try:
        rows = await store.select_messages()
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to load messages'
        )
    return [MessageOut.model_validate(r) for r in rows]


@router.post('', response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def post_message(
    req: MessageCreateRequest,
    store: SqlChatStore = Depends(get_store),
) -> MessageOut:
    try:
        row = await store.insert_message(req.author, req.payload, is_assistant=req.is_assistant)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to send message'
        )
    return MessageOut.model_validate(row)


@router.delete('/{message_id}', response_model=MessageDeleteResponse)
async def delete_message(
    message_id: str,
    store: SqlChatStore = Depends(get_store),
):
    try:
        row = await store.delete_message(message_id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to delete message'
        )
    if row is None:
        raise HTTPException(status_code=404, detail='Message not found')
    return MessageDeleteResponse(status='ok')
