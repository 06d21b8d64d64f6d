# backend/chatroom/db/init_db.py
from sqlalchemy.engine import Engine

from chatroom.db.base import Base
from chatroom.db.session import engine as default_engine

# models must be imported so the tables are registered on Base.metadata
from chatroom import models  # noqa: F401

def init_db(engine: Engine | None = None) -> None:
    Base.metadata.create_all(bind=engine or default_engine)
