# backend/chatroom/crud/messages.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatroom.models.message import ChatMessage


def list_messages(db: Session) -> list[ChatMessage]:
    stmt = select(ChatMessage).order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
    return list(db.execute(stmt).scalars())


def get_message(db: Session, message_id: str) -> ChatMessage | None:
    return db.get(ChatMessage, message_id)


def create_message(db: Session, author: str, payload: str, is_assistant: bool = False) -> ChatMessage:
    m = ChatMessage(
        author=author,
        payload=payload,
        is_assistant=is_assistant,
    )

    db.add(m)
    db.commit()
    db.refresh(m)
    return m


def update_payload(db: Session, message_id: str, payload: str) -> ChatMessage | None:
    m = db.get(ChatMessage, message_id)
    if m is None:
        return None
    m.payload = payload
    db.add(m)
    db.commit()
    db.refresh(m)
    return m


def delete_message(db: Session, m: ChatMessage) -> None:
    db.delete(m)
    db.commit()
