from __future__ import annotations

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from datetime import datetime

from chatroom.core.config import settings
from chatroom.crypto.codec import looks_like_blob
from chatroom.security.sanitizer import InputSanitizer


class MessageCreateRequest(BaseModel):
    """
    A message as posted by a client.
    Non-assistant payloads must already be encrypted blobs; the server never
    sees plaintext for them.
    """
    model_config = ConfigDict(extra='forbid')

    author: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description='Display name of the sender',
    )
    payload: str = Field(
        ...,
        min_length=1,
        max_length=64000,
        description='base64(salt || nonce || ciphertext||tag), or plain text for the assistant',
    )
    is_assistant: bool = False

    @field_validator('author')
    @classmethod
    def validate_author(cls, v: str) -> str:
        return InputSanitizer.sanitize_display_name(
            v, settings.username_min_length, max(settings.username_max_length, len(settings.assistant_name))
        )

    @model_validator(mode='after')
    def validate_payload_shape(self) -> 'MessageCreateRequest':
        if not self.is_assistant and not looks_like_blob(self.payload):
            raise ValueError('Payload is not an encrypted blob')
        return self


class MessageOut(BaseModel):
    """A stored message row."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    author: str
    payload: str
    is_assistant: bool
    created_at: datetime


class MessageDeleteResponse(BaseModel):
    model_config = ConfigDict(extra='forbid')
    status: str
