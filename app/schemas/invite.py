from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.schemas import Role


class InviteCreateRequest(BaseModel):
    room_id: str = Field(..., min_length=1)
    role: Role = Role.PARTICIPANT
    max_uses: int = Field(1, ge=1, le=10_000)
    expires_at: Optional[datetime] = None


class InviteCreateResponse(BaseModel):
    invite_id: str
    token: str
    link: str
    expires_at: datetime


class InviteRedeemRequest(BaseModel):
    token: str = Field(..., min_length=1)


class InviteRedeemResponse(BaseModel):
    room_id: str
    role: Role
    join_grant: str


class InviteRevokeRequest(BaseModel):
    invite_id: str = Field(..., min_length=1)


class InviteRevokeResponse(BaseModel):
    success: bool = True
    invite_id: str
