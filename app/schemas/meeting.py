from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.schemas import Role


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELED = "canceled"


TERMINAL_MEETING_STATUSES = frozenset({MeetingStatus.ENDED, MeetingStatus.CANCELED})


class MeetingLogType(str, Enum):
    CREATED = "created"
    STARTED = "started"
    TOKEN_ISSUED = "tokenIssued"
    JOIN_ATTEMPT = "joinAttempt"
    DENIED = "denied"
    ENDED = "ended"
    CANCELED = "canceled"


class JoinStatus(str, Enum):
    OK = "ok"
    WAITING = "waiting"
    DENIED = "denied"
    EXPIRED = "expired"


class Attendee(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    name: Optional[str] = Field(None, max_length=200)
    role: Role = Role.PARTICIPANT

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        cleaned = (value or "").strip().lower()
        if "@" not in cleaned:
            raise ValueError("email must contain '@'")
        return cleaned


class ScheduleMeetingRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    start_at: datetime
    duration_min: int = Field(..., gt=0, le=24 * 60)
    timezone: str = Field("UTC", min_length=1, max_length=64)
    allow_early_join_min: Optional[int] = Field(None, ge=0, le=24 * 60)
    require_passcode: bool = False
    passcode: Optional[str] = None
    lobby_enabled: bool = True
    attendees: List[Attendee] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("title cannot be blank")
        return trimmed

    @model_validator(mode="after")
    def passcode_required_when_enabled(self) -> "ScheduleMeetingRequest":
        if self.require_passcode and not self.passcode:
            raise ValueError("passcode is required when require_passcode is set")
        return self


class ScheduleMeetingResponse(BaseModel):
    meeting_id: str
    room_name: str
    host_link: str
    participant_link: str
    start_at: datetime
    end_at: datetime
    status: MeetingStatus


class MeetingResponse(BaseModel):
    meeting_id: str
    owner_uid: str
    status: MeetingStatus
    title: str
    description: Optional[str] = None
    start_at: datetime
    duration_min: int
    end_at: datetime
    timezone: str
    allow_early_join_min: int
    require_passcode: bool
    lobby_enabled: bool
    room_name: str
    expires_at: Optional[datetime] = None
    attendees: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class MeetingTokenRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1, max_length=100)
    passcode: Optional[str] = None

    @field_validator("display_name")
    @classmethod
    def trim_display_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("display_name cannot be blank")
        return trimmed


class MeetingTokenResponse(BaseModel):
    status: JoinStatus
    role: Optional[Role] = None
    token: Optional[str] = None
    identity: Optional[str] = None
    room_name: Optional[str] = None
    ws_url: Optional[str] = None
    remaining_ms: Optional[int] = None
    message: Optional[str] = None
    meeting: Optional[MeetingResponse] = None


class EndMeetingRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    key: Optional[str] = None


class CancelMeetingRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)


class MeetingLogEntry(BaseModel):
    type: MeetingLogType
    at: datetime
    by_uid: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    model_config = {"from_attributes": True}


class MeetingLogResponse(BaseModel):
    meeting_id: str
    entries: List[MeetingLogEntry]
    order: Literal["asc"] = "asc"
