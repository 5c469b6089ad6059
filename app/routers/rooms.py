import logging
from typing import List

from fastapi import APIRouter, Depends, status

from app.auth.auth import Identity, get_current_identity
from app.schemas.room import (
    AdmitAllResponse,
    ParticipantResponse,
    RoomCreateRequest,
    RoomGuardResponse,
    RoomJoinRequest,
    RoomJoinResponse,
    RoomResponse,
    RoomStatus,
    RoomStatusUpdate,
)
from app.services.lobby import LobbyAdmission, get_lobby_admission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreateRequest,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    """Start an instant room hosted by the caller."""
    room = lobby.create_room(
        identity.uid,
        name=payload.name,
        waiting_room=payload.waiting_room,
        display_name=payload.display_name or identity.display_name,
    )
    return RoomResponse.model_validate(room)


@router.post("/{room_id}/join", response_model=RoomJoinResponse)
async def join_room(
    room_id: str,
    payload: RoomJoinRequest,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    """
    Enter a room. With a waiting room the caller lands in the lobby until a
    host admits them; the guard in the response says which happened.
    """
    participant, decision = lobby.enter(
        room_id, identity.uid, payload.display_name or identity.display_name
    )
    room = lobby.get_room_or_404(room_id)
    return RoomJoinResponse(
        participant=ParticipantResponse.model_validate(participant),
        guard=RoomGuardResponse(
            room_id=room.room_id,
            status=RoomStatus(room.status),
            waiting_room=room.waiting_room,
            can_join=decision.can_join,
            needs_admission=decision.needs_admission,
        ),
    )


@router.post("/{room_id}/status", response_model=RoomResponse)
async def update_room_status(
    room_id: str,
    payload: RoomStatusUpdate,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    room = lobby.set_room_status(room_id, payload.status, identity.uid)
    return RoomResponse.model_validate(room)


@router.get("/{room_id}/lobby", response_model=List[ParticipantResponse])
async def list_lobby(
    room_id: str,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    waiting = lobby.list_waiting(room_id, identity.uid)
    return [ParticipantResponse.model_validate(record) for record in waiting]


@router.post("/{room_id}/lobby/admit-all", response_model=AdmitAllResponse)
async def admit_all(
    room_id: str,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    admitted = lobby.admit_all(room_id, identity.uid)
    return AdmitAllResponse(room_id=room_id, admitted=admitted)


@router.post("/{room_id}/lobby/{participant_uid}/admit", response_model=ParticipantResponse)
async def admit_participant(
    room_id: str,
    participant_uid: str,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    record = lobby.admit(room_id, participant_uid, identity.uid)
    return ParticipantResponse.model_validate(record)


@router.post("/{room_id}/lobby/{participant_uid}/deny", response_model=ParticipantResponse)
async def deny_participant(
    room_id: str,
    participant_uid: str,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
):
    record = lobby.deny(room_id, participant_uid, identity.uid)
    return ParticipantResponse.model_validate(record)
