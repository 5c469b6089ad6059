from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import Depends
from sqlalchemy.orm import Session

from app.auth.auth import has_capability
from app.database import get_db
from app.models.room import Room, RoomParticipant
from app.schemas.room import LobbyStatus, RoomStatus
from app.schemas.schemas import Capability, Role
from app.services.errors import (
    AlreadyTerminalError,
    ConflictError,
    DeniedError,
    NotFoundError,
    UnauthorizedError,
)
from app.services.room_guard import RoomGuardDecision, evaluate_room_guard, is_admitted_record
from app.utils.clock import as_utc, utc_now
from app.utils.identifiers import generate_room_id

logger = logging.getLogger(__name__)

ADMIT_ALL_MAX_ATTEMPTS = 3


class LobbyAdmission:
    """
    Ad-hoc rooms and their admission queue.

    Each (room, uid) has at most one current participant record
    (``superseded_at IS NULL``). Admitted and denied are terminal for a
    record; entering again after a denial supersedes it with a fresh
    waiting record so the history stays intact.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Lookups ---

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.db.query(Room).filter(Room.room_id == room_id).one_or_none()

    def get_room_or_404(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        return room

    def _current_query(self, room_id: str):
        return self.db.query(RoomParticipant).filter(
            RoomParticipant.room_id == room_id,
            RoomParticipant.superseded_at.is_(None),
        )

    def current_participant(self, room_id: str, uid: str) -> Optional[RoomParticipant]:
        return (
            self._current_query(room_id)
            .filter(RoomParticipant.uid == uid)
            .one_or_none()
        )

    def is_room_host(self, room_id: str, uid: Optional[str]) -> bool:
        """True when ``uid`` holds the host role in this room's own participant set."""
        if not uid:
            return False
        record = self.current_participant(room_id, uid)
        return (
            record is not None
            and record.role == Role.HOST.value
            and is_admitted_record(record)
        )

    def role_in_room(self, room_id: str, uid: Optional[str]) -> Optional[Role]:
        """Role of an admitted current participant, or None."""
        if not uid:
            return None
        record = self.current_participant(room_id, uid)
        if record is None or not is_admitted_record(record):
            return None
        return Role(record.role)

    def require_capability(
        self, room_id: str, uid: Optional[str], capability: Capability
    ) -> Role:
        self.get_room_or_404(room_id)
        role = self.role_in_room(room_id, uid)
        if role is None or not has_capability(role, capability):
            logger.warning(
                "uid %s lacks '%s' in room %s", uid, capability.value, room_id
            )
            raise UnauthorizedError(
                f"Your role in this room does not allow '{capability.value}'"
            )
        return role

    def list_waiting(self, room_id: str, by_uid: str) -> List[RoomParticipant]:
        self.require_capability(room_id, by_uid, Capability.ADMIT_LOBBY)
        return (
            self._current_query(room_id)
            .filter(RoomParticipant.lobby_status == LobbyStatus.WAITING.value)
            .order_by(RoomParticipant.joined_at.asc(), RoomParticipant.participant_id.asc())
            .all()
        )

    # --- Rooms ---

    def create_room(
        self,
        owner_uid: str,
        name: Optional[str] = None,
        waiting_room: bool = False,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Room:
        """Create an open room; the creator becomes its admitted host."""
        now = as_utc(now) if now is not None else utc_now()
        room = Room(
            room_id=generate_room_id(),
            owner_uid=owner_uid,
            name=name,
            status=RoomStatus.OPEN.value,
            waiting_room=waiting_room,
            created_at=now,
        )
        self.db.add(room)
        self.db.add(
            RoomParticipant(
                room_id=room.room_id,
                uid=owner_uid,
                display_name=display_name,
                role=Role.HOST.value,
                joined_at=now,
                lobby_status=LobbyStatus.ADMITTED.value,
                admitted_at=now,
            )
        )
        self.db.commit()
        self.db.refresh(room)
        logger.info("Created room %s for host %s", room.room_id, owner_uid)
        return room

    def set_room_status(
        self, room_id: str, status: RoomStatus, by_uid: str
    ) -> Room:
        self.require_capability(room_id, by_uid, Capability.ROOM_ADMIN)
        room = self.get_room_or_404(room_id)
        if room.status == RoomStatus.ENDED.value:
            raise AlreadyTerminalError(f"Room {room_id} has ended", reason=room.status)
        room.status = RoomStatus(status).value
        self.db.commit()
        self.db.refresh(room)
        logger.info("Room %s is now %s (by %s)", room_id, room.status, by_uid)
        return room

    # --- Participants ---

    def _new_record(
        self,
        room_id: str,
        uid: str,
        role: Role,
        display_name: Optional[str],
        lobby_status: LobbyStatus,
        now: datetime,
    ) -> RoomParticipant:
        record = RoomParticipant(
            room_id=room_id,
            uid=uid,
            display_name=display_name,
            role=role.value,
            joined_at=now,
            lobby_status=lobby_status.value,
            admitted_at=now if lobby_status == LobbyStatus.ADMITTED else None,
        )
        self.db.add(record)
        return record

    def enter(
        self,
        room_id: str,
        uid: str,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[RoomParticipant, RoomGuardDecision]:
        """
        Put ``uid`` into the room: admitted directly when no admission is
        needed, otherwise as a waiting lobby entry.
        """
        now = as_utc(now) if now is not None else utc_now()
        room = self.get_room_or_404(room_id)
        record = self.current_participant(room_id, uid)
        decision = evaluate_room_guard(
            room.status, room.waiting_room, is_admitted_record(record)
        )
        if not decision.can_join:
            raise DeniedError(
                f"Room {room_id} is not accepting this participant",
                reason=room.status,
            )

        if record is not None and record.lobby_status in (
            None,
            LobbyStatus.ADMITTED.value,
            LobbyStatus.WAITING.value,
        ):
            if display_name:
                record.display_name = display_name
            self.db.commit()
            self.db.refresh(record)
            return record, decision

        if record is not None:
            record.superseded_at = now
        status = LobbyStatus.WAITING if decision.needs_admission else LobbyStatus.ADMITTED
        fresh = self._new_record(
            room_id, uid, Role.PARTICIPANT, display_name, status, now
        )
        self.db.commit()
        self.db.refresh(fresh)
        logger.info("uid %s entered room %s as %s", uid, room_id, status.value)
        return fresh, decision

    def grant_role(
        self,
        room_id: str,
        uid: str,
        role: Role,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RoomParticipant:
        """
        Admit ``uid`` with ``role`` without going through the lobby.
        An existing host is never demoted. Does not commit.
        """
        now = as_utc(now) if now is not None else utc_now()
        record = self.current_participant(room_id, uid)
        if record is None or record.lobby_status == LobbyStatus.DENIED.value:
            if record is not None:
                record.superseded_at = now
            return self._new_record(
                room_id, uid, Role(role), display_name, LobbyStatus.ADMITTED, now
            )

        if record.role != Role.HOST.value:
            record.role = Role(role).value
        if record.lobby_status == LobbyStatus.WAITING.value:
            record.lobby_status = LobbyStatus.ADMITTED.value
            record.admitted_at = now
        if display_name and not record.display_name:
            record.display_name = display_name
        return record

    def _decide(
        self,
        room_id: str,
        participant_uid: str,
        by_uid: str,
        outcome: LobbyStatus,
        now: Optional[datetime],
    ) -> RoomParticipant:
        now = as_utc(now) if now is not None else utc_now()
        self.require_capability(room_id, by_uid, Capability.ADMIT_LOBBY)
        record = self.current_participant(room_id, participant_uid)
        if record is None:
            raise NotFoundError(f"{participant_uid} is not in room {room_id}")
        if record.lobby_status != LobbyStatus.WAITING.value:
            raise ConflictError(
                f"{participant_uid} is not waiting in the lobby",
                reason=record.lobby_status or LobbyStatus.ADMITTED.value,
            )

        values = {"lobby_status": outcome.value}
        if outcome == LobbyStatus.ADMITTED:
            values["admitted_at"] = now
        else:
            values["denied_at"] = now
        updated = (
            self.db.query(RoomParticipant)
            .filter(
                RoomParticipant.participant_id == record.participant_id,
                RoomParticipant.lobby_status == LobbyStatus.WAITING.value,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(record)
        if updated != 1:
            raise ConflictError(
                f"{participant_uid} was already decided", reason=record.lobby_status
            )
        logger.info(
            "Lobby: %s %s in room %s (by %s)",
            outcome.value,
            participant_uid,
            room_id,
            by_uid,
        )
        return record

    def admit(
        self,
        room_id: str,
        participant_uid: str,
        by_uid: str,
        now: Optional[datetime] = None,
    ) -> RoomParticipant:
        return self._decide(room_id, participant_uid, by_uid, LobbyStatus.ADMITTED, now)

    def deny(
        self,
        room_id: str,
        participant_uid: str,
        by_uid: str,
        now: Optional[datetime] = None,
    ) -> RoomParticipant:
        return self._decide(room_id, participant_uid, by_uid, LobbyStatus.DENIED, now)

    def admit_all(
        self,
        room_id: str,
        by_uid: str,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Admit everyone waiting as of one read, all or nothing.

        The UPDATE is restricted to the ids read and to rows still waiting;
        if its count differs from the read, someone else changed the lobby in
        between and the attempt is rolled back and retried.
        """
        now = as_utc(now) if now is not None else utc_now()
        self.require_capability(room_id, by_uid, Capability.ADMIT_LOBBY)
        for attempt in range(1, ADMIT_ALL_MAX_ATTEMPTS + 1):
            waiting_ids = [
                participant_id
                for (participant_id,) in self.db.query(RoomParticipant.participant_id)
                .filter(
                    RoomParticipant.room_id == room_id,
                    RoomParticipant.superseded_at.is_(None),
                    RoomParticipant.lobby_status == LobbyStatus.WAITING.value,
                )
                .all()
            ]
            if not waiting_ids:
                return 0
            updated = (
                self.db.query(RoomParticipant)
                .filter(
                    RoomParticipant.participant_id.in_(waiting_ids),
                    RoomParticipant.superseded_at.is_(None),
                    RoomParticipant.lobby_status == LobbyStatus.WAITING.value,
                )
                .update(
                    {
                        "lobby_status": LobbyStatus.ADMITTED.value,
                        "admitted_at": now,
                    },
                    synchronize_session=False,
                )
            )
            if updated == len(waiting_ids):
                self.db.commit()
                self.db.expire_all()
                logger.info(
                    "Lobby: admitted %d waiting participants in room %s (by %s)",
                    updated,
                    room_id,
                    by_uid,
                )
                return updated
            self.db.rollback()
            logger.warning(
                "admit_all on room %s raced with another update (attempt %d/%d)",
                room_id,
                attempt,
                ADMIT_ALL_MAX_ATTEMPTS,
            )
        raise ConflictError(
            f"Lobby of room {room_id} kept changing; nothing was admitted"
        )


def get_lobby_admission(db: Session = Depends(get_db)) -> LobbyAdmission:
    """Dependency provider for LobbyAdmission."""
    return LobbyAdmission(db)
