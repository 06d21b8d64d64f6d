# backend/chatroom/crud/presence.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chatroom.models.presence import PresenceRecord


def get_by_name(db: Session, name: str) -> PresenceRecord | None:
    stmt = select(PresenceRecord).where(PresenceRecord.name == name)
    return db.execute(stmt).scalar_one_or_none()


def create_presence(db: Session, name: str) -> PresenceRecord:
    """Raises sqlalchemy.exc.IntegrityError when the name is already claimed."""
    p = PresenceRecord(name=name, last_seen_at=datetime.now(timezone.utc))

    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def touch_presence(db: Session, name: str) -> PresenceRecord | None:
    p = get_by_name(db, name)
    if p is None:
        return None
    p.last_seen_at = datetime.now(timezone.utc)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def delete_presence(db: Session, p: PresenceRecord) -> None:
    db.delete(p)
    db.commit()


def count_presence(db: Session, since: datetime | None = None) -> int:
    stmt = select(func.count()).select_from(PresenceRecord)
    if since is not None:
        stmt = stmt.where(PresenceRecord.last_seen_at >= since)
    return db.execute(stmt).scalar_one()
