from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config.loader import get_invite_settings, get_schedule_settings
from app.database import get_db
from app.models.invite import Invite
from app.schemas.room import RoomStatus
from app.schemas.schemas import Capability, Role
from app.services.errors import (
    ConflictError,
    DeniedError,
    ExpiredError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from app.services.lobby import LobbyAdmission
from app.services.token_codec import InvitationTokenCodec, get_invite_codec
from app.utils.clock import as_utc, utc_now
from app.utils.identifiers import generate_invite_id

logger = logging.getLogger(__name__)

JOIN_GRANT_BYTES = 32


@dataclass(frozen=True)
class CreatedInvite:
    invite: Invite
    token: str
    link: str


@dataclass(frozen=True)
class Redemption:
    room_id: str
    role: Role
    join_grant: str


class InviteManager:
    """Limited-use, revocable, expiring invitations to ad-hoc rooms."""

    def __init__(
        self,
        db: Session,
        codec: Optional[InvitationTokenCodec] = None,
        lobby: Optional[LobbyAdmission] = None,
        settings: Optional[Dict] = None,
    ):
        self.db = db
        self.codec = codec or get_invite_codec()
        self.lobby = lobby or LobbyAdmission(db)
        self.settings = settings or get_invite_settings()

    def get(self, invite_id: str) -> Optional[Invite]:
        return self.db.query(Invite).filter(Invite.invite_id == invite_id).one_or_none()

    def create(
        self,
        room_id: str,
        by_uid: str,
        role: Role = Role.PARTICIPANT,
        max_uses: int = 1,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> CreatedInvite:
        now = as_utc(now) if now is not None else utc_now()
        self.lobby.require_capability(room_id, by_uid, Capability.MANAGE_INVITES)
        if max_uses is None or max_uses < 1:
            raise InvalidInputError("max_uses must be at least 1")
        if expires_at is None:
            expires_at = now + timedelta(minutes=self.settings["default_ttl_minutes"])
        expires_at = as_utc(expires_at)
        if expires_at <= now:
            raise InvalidInputError("expires_at must be in the future")

        invite = Invite(
            invite_id=generate_invite_id(),
            room_id=room_id,
            created_by=by_uid,
            role=Role(role).value,
            max_uses=max_uses,
            used=0,
            expires_at=expires_at,
            revoked=False,
            created_at=now,
        )
        token = self.codec.sign(invite.invite_id, room_id, Role(role), expires_at)
        self.db.add(invite)
        self.db.commit()
        self.db.refresh(invite)

        base_url = get_schedule_settings()["public_base_url"]
        link = f"{base_url}/invite?token={token}"
        logger.info(
            "Invite %s created for room %s (role=%s, max_uses=%s) by %s",
            invite.invite_id,
            room_id,
            invite.role,
            max_uses,
            by_uid,
        )
        return CreatedInvite(invite=invite, token=token, link=link)

    def redeem(
        self,
        token: str,
        uid: str,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Redemption:
        now = as_utc(now) if now is not None else utc_now()
        payload = self.codec.verify(token, now=now)

        invite = self.get(payload.invite_id)
        if invite is None:
            raise NotFoundError("Invite not found")
        if invite.room_id != payload.room_id or invite.role != payload.role.value:
            logger.warning("Invite %s does not match its token", invite.invite_id)
            raise DeniedError("Invite does not match this token")
        if invite.revoked:
            raise ConflictError("Invite has been revoked", reason="revoked")
        if as_utc(invite.expires_at) < now:
            raise ExpiredError("Invite has expired")

        room = self.lobby.get_room_or_404(invite.room_id)
        if room.status == RoomStatus.ENDED.value:
            raise DeniedError("Room has ended", reason=room.status)

        # Compare-and-swap on the counter: the WHERE clause re-checks the
        # limit and revocation in the same statement that increments.
        updated = (
            self.db.query(Invite)
            .filter(
                Invite.invite_id == invite.invite_id,
                Invite.used < Invite.max_uses,
                Invite.revoked.is_(False),
            )
            .update({"used": Invite.used + 1}, synchronize_session=False)
        )
        if updated != 1:
            self.db.commit()
            self.db.refresh(invite)
            if invite.revoked:
                raise ConflictError("Invite has been revoked", reason="revoked")
            raise ConflictError("Invite usage limit reached", reason="max_uses")

        self.lobby.grant_role(
            invite.room_id, uid, Role(invite.role), display_name=display_name, now=now
        )
        self.db.commit()
        self.db.refresh(invite)
        logger.info(
            "Invite %s redeemed by %s (%s/%s)",
            invite.invite_id,
            uid,
            invite.used,
            invite.max_uses,
        )
        return Redemption(
            room_id=invite.room_id,
            role=Role(invite.role),
            join_grant=secrets.token_hex(JOIN_GRANT_BYTES),
        )

    def revoke(self, invite_id: str, by_uid: str) -> Invite:
        invite = self.get(invite_id)
        if invite is None:
            raise NotFoundError(f"Invite {invite_id} not found")
        if invite.created_by != by_uid:
            raise UnauthorizedError("Only the invite creator may revoke it")
        updated = (
            self.db.query(Invite)
            .filter(Invite.invite_id == invite_id, Invite.revoked.is_(False))
            .update({"revoked": True}, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(invite)
        if updated != 1:
            raise ConflictError("Invite is already revoked", reason="revoked")
        logger.info("Invite %s revoked by %s", invite_id, by_uid)
        return invite


def get_invite_manager(db: Session = Depends(get_db)) -> InviteManager:
    """Dependency provider for InviteManager."""
    return InviteManager(db)
