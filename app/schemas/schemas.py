from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    """Room/meeting role. Key possession or a participant record maps onto it."""

    HOST = "host"
    PARTICIPANT = "participant"


class Capability(str, Enum):
    JOIN = "join"
    PUBLISH = "publish"
    SUBSCRIBE = "subscribe"
    PUBLISH_DATA = "publish_data"
    UPDATE_OWN_METADATA = "update_own_metadata"
    ROOM_ADMIN = "room_admin"
    ADMIT_LOBBY = "admit_lobby"
    MANAGE_INVITES = "manage_invites"
    END_MEETING = "end_meeting"


class ErrorResponse(BaseModel):
    error: str
    detail: str
    reason: Optional[str] = None
