from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from chatroom.db.store import SqlChatStore, StoreError, get_store
from chatroom.schemas.presence import JoinRequest, OnlineCountOut, PresenceOut
from chatroom.services.presence import InvalidName, NameTaken, PresenceManager, ReservedName


router = APIRouter(prefix='/presence', tags=['presence'])


def get_presence(store: SqlChatStore = Depends(get_store)) -> PresenceManager:
    return PresenceManager(store)


@router.post('/join', response_model=PresenceOut, status_code=status.HTTP_201_CREATED)
async def join(payload: JoinRequest, presence: PresenceManager = Depends(get_presence)):
    try:
        name = await presence.join(payload.name)
    except ReservedName:
        raise HTTPException(status_code=400, detail='This username is reserved')
    except InvalidName as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NameTaken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Username already taken')
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to claim name'
        )

    try:
        row = await presence.store.select_presence(name)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to read presence'
        )
    if row is None:
        # released between claim and read
        raise HTTPException(status_code=404, detail='Name not found')
    return PresenceOut.model_validate(row)


@router.post('/{name}/heartbeat')
async def heartbeat(name: str, presence: PresenceManager = Depends(get_presence)):
    try:
        found = await presence.heartbeat(name)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to update presence'
        )
    if not found:
        raise HTTPException(status_code=404, detail='Name not found')
    return {"status": "ok"}


@router.delete('/{name}')
async def leave(name: str, presence: PresenceManager = Depends(get_presence)):
    """Release a name. Releasing a name nobody holds is not an error."""
    try:
        released = await presence.leave(name)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to release name'
        )
    return {"status": "ok", "released": released}


@router.get('/count', response_model=OnlineCountOut)
async def online_count(presence: PresenceManager = Depends(get_presence)):
    try:
        online = await presence.online_count()
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to count presence'
        )
    return OnlineCountOut(online=online)
