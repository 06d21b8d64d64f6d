# backend/chatroom/models/__init__.py
from .message import ChatMessage
from .presence import PresenceRecord

__all__ = ["ChatMessage", "PresenceRecord"]
