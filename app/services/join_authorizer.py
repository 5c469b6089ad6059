"""Join decisions for scheduled meetings.

A join request names a meeting and presents a join key (plus a passcode when
the meeting needs one). The key alone decides the role: the host key makes a
host, the participant key a participant. The first host join moves the
meeting to live. A successful decision carries a media grant for the room.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.meeting import ScheduledMeeting
from app.schemas.meeting import JoinStatus, MeetingLogType, MeetingStatus
from app.schemas.schemas import Role
from app.services.audit import MeetingAuditLog
from app.services.errors import AlreadyTerminalError, ConflictError
from app.services.media_grant import MediaGrant, MediaGrantIssuer, get_media_grant_issuer
from app.services.meeting_lifecycle import MeetingLifecycle, is_terminal, role_for_key
from app.services.subscription_policy import SubscriptionPolicy
from app.utils.clock import as_utc, utc_now
from app.utils.security import verify_passcode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinDecision:
    status: JoinStatus
    role: Optional[Role] = None
    grant: Optional[MediaGrant] = None
    remaining_ms: Optional[int] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    meeting: Optional[ScheduledMeeting] = None

    @property
    def ok(self) -> bool:
        return self.status == JoinStatus.OK


def format_eta(remaining_ms: int) -> str:
    minutes, seconds = divmod(max(0, remaining_ms) // 1000, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"Meeting opens in {hours}h {minutes}m"
    if minutes:
        return f"Meeting opens in {minutes} min"
    return f"Meeting opens in {seconds} s"


class JoinAuthorizer:
    def __init__(
        self,
        db: Session,
        lifecycle: Optional[MeetingLifecycle] = None,
        grants: Optional[MediaGrantIssuer] = None,
        policy: Optional[SubscriptionPolicy] = None,
        audit: Optional[MeetingAuditLog] = None,
    ):
        self.db = db
        self.audit = audit or MeetingAuditLog(db)
        self.lifecycle = lifecycle or MeetingLifecycle(db, audit=self.audit)
        self.grants = grants or get_media_grant_issuer()
        self.policy = policy or SubscriptionPolicy.from_settings()

    def _deny(
        self,
        meeting: ScheduledMeeting,
        reason: str,
        now: datetime,
        role: Optional[Role] = None,
        display_name: Optional[str] = None,
    ) -> JoinDecision:
        meta: Dict[str, Any] = {"reason": reason, "display_name": display_name}
        if role is not None:
            meta["role"] = role.value
        self.audit.record(meeting.meeting_id, MeetingLogType.DENIED, meta=meta, at=now)
        logger.info("Join denied for meeting %s: %s", meeting.meeting_id, reason)
        return JoinDecision(
            status=JoinStatus.DENIED, role=role, reason=reason, meeting=meeting
        )

    def _role_for_key(self, meeting: ScheduledMeeting, key: str) -> Optional[Role]:
        return role_for_key(meeting, key)

    def authorize(
        self,
        meeting_id: str,
        presented_key: str,
        display_name: str,
        passcode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> JoinDecision:
        # One clock reading for every comparison in this request.
        now = as_utc(now) if now is not None else utc_now()

        meeting = self.lifecycle.get(meeting_id)
        if meeting is None:
            logger.info("Join denied: meeting %s not found", meeting_id)
            return JoinDecision(status=JoinStatus.DENIED, reason="not found")

        if is_terminal(meeting):
            return self._deny(meeting, meeting.status, now, display_name=display_name)

        if self.lifecycle.is_past_grace(meeting, now):
            self.audit.record(
                meeting.meeting_id,
                MeetingLogType.JOIN_ATTEMPT,
                meta={"outcome": JoinStatus.EXPIRED.value, "display_name": display_name},
                at=now,
            )
            return JoinDecision(
                status=JoinStatus.EXPIRED,
                reason="meeting window has closed",
                meeting=meeting,
            )

        role = self._role_for_key(meeting, presented_key)
        if role is None:
            return self._deny(meeting, "invalid key", now, display_name=display_name)

        if meeting.require_passcode and role == Role.PARTICIPANT:
            if not passcode:
                return self._deny(
                    meeting, "passcode required", now, role, display_name
                )
            if not verify_passcode(passcode, meeting.passcode_hash):
                return self._deny(
                    meeting, "invalid passcode", now, role, display_name
                )

        early_join_at = self.lifecycle.early_join_at(meeting)
        if now < early_join_at:
            remaining_ms = int((early_join_at - now).total_seconds() * 1000)
            self.audit.record(
                meeting.meeting_id,
                MeetingLogType.JOIN_ATTEMPT,
                meta={
                    "outcome": JoinStatus.WAITING.value,
                    "role": role.value,
                    "remaining_ms": remaining_ms,
                },
                at=now,
            )
            return JoinDecision(
                status=JoinStatus.WAITING,
                role=role,
                remaining_ms=remaining_ms,
                message=format_eta(remaining_ms),
                meeting=meeting,
            )

        starts_meeting = (
            role == Role.HOST and meeting.status == MeetingStatus.SCHEDULED.value
        )
        if starts_meeting:
            decision = self.policy.can_host_start(meeting.owner_uid, meeting.duration_min)
            if not decision.allowed:
                return self._deny(meeting, decision.reason, now, role, display_name)
        elif role == Role.PARTICIPANT:
            joined = self.audit.count(
                meeting.meeting_id, MeetingLogType.TOKEN_ISSUED, role=Role.PARTICIPANT.value
            )
            decision = self.policy.can_participant_join(meeting.owner_uid, joined)
            if not decision.allowed:
                return self._deny(meeting, decision.reason, now, role, display_name)

        if starts_meeting:
            try:
                self.lifecycle.start(meeting, now=now)
            except AlreadyTerminalError:
                return self._deny(meeting, meeting.status, now, role, display_name)
            except ConflictError:
                # Another host join won the race; the meeting is live either way.
                logger.debug("Meeting %s was started concurrently", meeting.meeting_id)

        grant = self.grants.issue(role, meeting.room_name, display_name, now=now)
        self.audit.record(
            meeting.meeting_id,
            MeetingLogType.TOKEN_ISSUED,
            meta={"role": role.value, "identity": grant.identity},
            at=now,
        )
        return JoinDecision(
            status=JoinStatus.OK, role=role, grant=grant, meeting=meeting
        )


def get_join_authorizer(db: Session = Depends(get_db)) -> JoinAuthorizer:
    """Dependency provider for JoinAuthorizer."""
    return JoinAuthorizer(db)
