# backend/chatroom/models/presence.py
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from chatroom.db.base import Base
from chatroom.models.message import _utcnow


class PresenceRecord(Base):
    __tablename__ = "active_usernames"

    id: Mapped[int] = mapped_column(primary_key=True)

    # the uniqueness constraint is what actually makes a name claim exclusive
    name: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
