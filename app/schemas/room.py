from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.schemas import Role


class RoomStatus(str, Enum):
    OPEN = "open"
    LOCKED = "locked"
    ENDED = "ended"


class LobbyStatus(str, Enum):
    WAITING = "waiting"
    ADMITTED = "admitted"
    DENIED = "denied"


class RoomCreateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    waiting_room: bool = False
    display_name: Optional[str] = Field(None, max_length=100)


class RoomResponse(BaseModel):
    room_id: str
    owner_uid: str
    name: Optional[str] = None
    status: RoomStatus
    waiting_room: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoomStatusUpdate(BaseModel):
    status: RoomStatus


class RoomJoinRequest(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)

    @field_validator("display_name")
    @classmethod
    def trim_display_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ParticipantResponse(BaseModel):
    room_id: str
    uid: str
    display_name: Optional[str] = None
    role: Role
    joined_at: Optional[datetime] = None
    lobby_status: Optional[LobbyStatus] = None
    admitted_at: Optional[datetime] = None
    denied_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoomGuardResponse(BaseModel):
    room_id: str
    status: RoomStatus
    waiting_room: bool
    can_join: bool
    needs_admission: bool


class RoomJoinResponse(BaseModel):
    participant: ParticipantResponse
    guard: RoomGuardResponse


class AdmitAllResponse(BaseModel):
    room_id: str
    admitted: int


class RoomTokenRequest(BaseModel):
    room_id: str = Field(..., min_length=1)


class RoomTokenResponse(BaseModel):
    token: str
    identity: str
    room_name: str
    role: Role
    ws_url: Optional[str] = None
