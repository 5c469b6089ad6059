import logging

from fastapi import APIRouter, Depends

from app.auth.auth import Identity, get_current_identity
from app.schemas.room import RoomGuardResponse, RoomTokenRequest, RoomTokenResponse
from app.schemas.schemas import Role
from app.services.errors import DeniedError
from app.services.lobby import LobbyAdmission, get_lobby_admission
from app.services.media_grant import MediaGrantIssuer, get_media_grant_issuer
from app.services.room_guard import RoomGuard, get_room_guard, is_admitted_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/meet", tags=["meet"])


@router.get("/rooms/{room_id}/guard", response_model=RoomGuardResponse)
async def get_guard(
    room_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: RoomGuard = Depends(get_room_guard),
):
    """Whether the caller may join the room now, and whether a lobby applies."""
    return guard.for_identity(room_id, identity.uid)


@router.post("/token", response_model=RoomTokenResponse)
async def get_room_token(
    payload: RoomTokenRequest,
    identity: Identity = Depends(get_current_identity),
    lobby: LobbyAdmission = Depends(get_lobby_admission),
    guard: RoomGuard = Depends(get_room_guard),
    issuer: MediaGrantIssuer = Depends(get_media_grant_issuer),
):
    """Media token for an admitted participant of an ad-hoc room."""
    decision = guard.for_identity(payload.room_id, identity.uid)
    record = lobby.current_participant(payload.room_id, identity.uid)
    if not decision.can_join or not is_admitted_record(record):
        logger.info(
            f"Media token refused for {identity.uid} in room {payload.room_id}"
        )
        raise DeniedError(
            "You have not been admitted to this room",
            reason=record.lobby_status if record is not None else "not_a_participant",
        )
    grant = issuer.issue(
        Role(record.role),
        payload.room_id,
        record.display_name or identity.display_name,
    )
    return RoomTokenResponse(
        token=grant.token,
        identity=grant.identity,
        room_name=grant.room_name,
        role=grant.role,
        ws_url=grant.ws_url,
    )
