import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.auth.auth import Identity, get_current_identity, get_optional_identity
from app.schemas.meeting import (
    CancelMeetingRequest,
    EndMeetingRequest,
    JoinStatus,
    MeetingLogEntry,
    MeetingLogResponse,
    MeetingResponse,
    MeetingTokenRequest,
    MeetingTokenResponse,
    ScheduleMeetingRequest,
    ScheduleMeetingResponse,
)
from app.services.join_authorizer import JoinAuthorizer, JoinDecision, get_join_authorizer
from app.services.meeting_lifecycle import MeetingLifecycle, get_meeting_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schedule", tags=["schedule"])

_DECISION_STATUS_CODES = {
    JoinStatus.OK: status.HTTP_200_OK,
    JoinStatus.WAITING: status.HTTP_200_OK,
    JoinStatus.DENIED: status.HTTP_403_FORBIDDEN,
    JoinStatus.EXPIRED: status.HTTP_410_GONE,
}


def _token_response(decision: JoinDecision) -> MeetingTokenResponse:
    body = MeetingTokenResponse(
        status=decision.status,
        role=decision.role,
        remaining_ms=decision.remaining_ms,
        message=decision.message or decision.reason,
    )
    if decision.grant is not None:
        body.token = decision.grant.token
        body.identity = decision.grant.identity
        body.room_name = decision.grant.room_name
        body.ws_url = decision.grant.ws_url
    if decision.ok and decision.meeting is not None:
        body.meeting = MeetingResponse.model_validate(decision.meeting)
    return body


@router.post("/create", response_model=ScheduleMeetingResponse)
async def schedule_meeting(
    payload: ScheduleMeetingRequest,
    identity: Identity = Depends(get_current_identity),
    lifecycle: MeetingLifecycle = Depends(get_meeting_lifecycle),
):
    """Schedule a meeting and return its host and participant links."""
    logger.debug(f"Scheduling meeting '{payload.title}' for {identity.uid}")
    return lifecycle.schedule(identity.uid, payload)


@router.post("/token", response_model=MeetingTokenResponse)
async def request_meeting_token(
    payload: MeetingTokenRequest,
    authorizer: JoinAuthorizer = Depends(get_join_authorizer),
):
    """
    Exchange a join key for a media token.
    No sign-in is needed: the key decides the role. The response status is
    200 for ok and waiting, 403 when denied (404 for an unknown meeting) and
    410 once the meeting window has closed.
    """
    decision = authorizer.authorize(
        payload.meeting_id,
        payload.key,
        payload.display_name,
        passcode=payload.passcode,
    )
    status_code = _DECISION_STATUS_CODES[decision.status]
    if decision.status == JoinStatus.DENIED and decision.meeting is None:
        status_code = status.HTTP_404_NOT_FOUND
    body = _token_response(decision)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.post("/end", response_model=MeetingResponse)
async def end_meeting(
    payload: EndMeetingRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    lifecycle: MeetingLifecycle = Depends(get_meeting_lifecycle),
):
    """End a meeting as its owner, or by presenting the host key."""
    meeting = lifecycle.get_or_404(payload.meeting_id)
    lifecycle.end(
        meeting,
        by_uid=identity.uid if identity else None,
        host_key=payload.key,
    )
    return MeetingResponse.model_validate(meeting)


@router.post("/cancel", response_model=MeetingResponse)
async def cancel_meeting(
    payload: CancelMeetingRequest,
    identity: Identity = Depends(get_current_identity),
    lifecycle: MeetingLifecycle = Depends(get_meeting_lifecycle),
):
    meeting = lifecycle.get_or_404(payload.meeting_id)
    lifecycle.cancel(meeting, identity.uid)
    return MeetingResponse.model_validate(meeting)


@router.get("/{meeting_id}", response_model=MeetingResponse)
async def get_meeting(
    meeting_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: MeetingLifecycle = Depends(get_meeting_lifecycle),
):
    meeting = lifecycle.get_owned(meeting_id, identity.uid)
    return MeetingResponse.model_validate(meeting)


@router.get("/{meeting_id}/logs", response_model=MeetingLogResponse)
async def get_meeting_logs(
    meeting_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: MeetingLifecycle = Depends(get_meeting_lifecycle),
):
    """Audit trail of one meeting, oldest first. Owner only."""
    meeting = lifecycle.get_owned(meeting_id, identity.uid)
    entries = lifecycle.audit.entries(meeting.meeting_id)
    return MeetingLogResponse(
        meeting_id=meeting.meeting_id,
        entries=[MeetingLogEntry.model_validate(entry) for entry in entries],
    )
