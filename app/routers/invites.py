import logging

from fastapi import APIRouter, Depends

from app.auth.auth import Identity, get_current_identity
from app.schemas.invite import (
    InviteCreateRequest,
    InviteCreateResponse,
    InviteRedeemRequest,
    InviteRedeemResponse,
    InviteRevokeRequest,
    InviteRevokeResponse,
)
from app.services.invites import InviteManager, get_invite_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invites", tags=["invites"])


@router.post("/create", response_model=InviteCreateResponse)
async def create_invite(
    payload: InviteCreateRequest,
    identity: Identity = Depends(get_current_identity),
    invite_manager: InviteManager = Depends(get_invite_manager),
):
    """Create an invitation to a room. Hosts of the room only."""
    created = invite_manager.create(
        payload.room_id,
        identity.uid,
        role=payload.role,
        max_uses=payload.max_uses,
        expires_at=payload.expires_at,
    )
    return InviteCreateResponse(
        invite_id=created.invite.invite_id,
        token=created.token,
        link=created.link,
        expires_at=created.invite.expires_at,
    )


@router.post("/redeem", response_model=InviteRedeemResponse)
async def redeem_invite(
    payload: InviteRedeemRequest,
    identity: Identity = Depends(get_current_identity),
    invite_manager: InviteManager = Depends(get_invite_manager),
):
    redemption = invite_manager.redeem(
        payload.token, identity.uid, display_name=identity.display_name
    )
    return InviteRedeemResponse(
        room_id=redemption.room_id,
        role=redemption.role,
        join_grant=redemption.join_grant,
    )


@router.post("/revoke", response_model=InviteRevokeResponse)
async def revoke_invite(
    payload: InviteRevokeRequest,
    identity: Identity = Depends(get_current_identity),
    invite_manager: InviteManager = Depends(get_invite_manager),
):
    invite = invite_manager.revoke(payload.invite_id, identity.uid)
    return InviteRevokeResponse(success=True, invite_id=invite.invite_id)
