from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict


class JoinRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    # bounds and the denylist are checked by PresenceManager so the API and
    # in-process sessions report the same errors
    name: str = Field(..., max_length=128)


class PresenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    last_seen_at: datetime


class OnlineCountOut(BaseModel):
    model_config = ConfigDict(extra='forbid')

    online: int
