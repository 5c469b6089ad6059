from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.room import Room, RoomParticipant
from app.schemas.room import LobbyStatus, RoomGuardResponse, RoomStatus
from app.services.errors import NotFoundError


@dataclass(frozen=True)
class RoomGuardDecision:
    can_join: bool
    needs_admission: bool


def evaluate_room_guard(
    room_status: RoomStatus | str,
    waiting_room_enabled: bool,
    is_existing_participant: bool,
) -> RoomGuardDecision:
    """
    Decide whether an identity may join an ad-hoc room right now.

    ``needs_admission`` is reported even when ``can_join`` is false so a
    client can tell "wait in the lobby" apart from "join immediately".
    """
    status = RoomStatus(room_status)
    if status == RoomStatus.ENDED:
        can_join = False
    elif status == RoomStatus.LOCKED:
        can_join = bool(is_existing_participant)
    else:
        can_join = True
    needs_admission = bool(waiting_room_enabled) and not is_existing_participant
    return RoomGuardDecision(can_join=can_join, needs_admission=needs_admission)


def is_admitted_record(record: Optional[RoomParticipant]) -> bool:
    """A participant record counts once it is past the lobby (or never needed it)."""
    if record is None:
        return False
    return record.lobby_status in (None, LobbyStatus.ADMITTED.value)


class RoomGuard:
    """Read-only guard lookups for ad-hoc rooms."""

    def __init__(self, db: Session):
        self.db = db

    def for_identity(self, room_id: str, uid: str) -> RoomGuardResponse:
        room = self.db.query(Room).filter(Room.room_id == room_id).one_or_none()
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        record = (
            self.db.query(RoomParticipant)
            .filter(
                RoomParticipant.room_id == room_id,
                RoomParticipant.uid == uid,
                RoomParticipant.superseded_at.is_(None),
            )
            .one_or_none()
        )
        decision = evaluate_room_guard(
            room.status, room.waiting_room, is_admitted_record(record)
        )
        return RoomGuardResponse(
            room_id=room.room_id,
            status=RoomStatus(room.status),
            waiting_room=room.waiting_room,
            can_join=decision.can_join,
            needs_admission=decision.needs_admission,
        )


def get_room_guard(db: Session = Depends(get_db)) -> RoomGuard:
    """Dependency provider for RoomGuard."""
    return RoomGuard(db)
