from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.meeting import ScheduledMeeting
from app.schemas.meeting import (
    MeetingLogType,
    MeetingStatus,
    ScheduleMeetingRequest,
    ScheduleMeetingResponse,
    TERMINAL_MEETING_STATUSES,
)
from app.auth.auth import has_capability
from app.config.loader import get_schedule_settings
from app.schemas.schemas import Capability, Role
from app.services.audit import MeetingAuditLog
from app.services.errors import (
    AlreadyTerminalError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from app.utils.clock import as_utc, utc_now
from app.utils.identifiers import generate_meeting_id
from app.utils.security import generate_join_key, hash_passcode, is_valid_passcode

logger = logging.getLogger(__name__)


def keys_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """Exact, constant-time comparison of a presented join key."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def role_for_key(meeting: ScheduledMeeting, key: Optional[str]) -> Optional[Role]:
    # Both comparisons always run so timing does not reveal which key matched.
    is_host = keys_match(key, meeting.host_join_key)
    is_participant = keys_match(key, meeting.participant_join_key)
    if is_host:
        return Role.HOST
    if is_participant:
        return Role.PARTICIPANT
    return None


def meeting_status(meeting: ScheduledMeeting) -> MeetingStatus:
    return MeetingStatus(meeting.status)


def is_terminal(meeting: ScheduledMeeting) -> bool:
    return meeting_status(meeting) in TERMINAL_MEETING_STATUSES


class MeetingLifecycle:
    """
    State machine for scheduled meetings.

    scheduled -> live -> ended, with scheduled|live -> canceled. Ended and
    canceled are terminal. Every transition is a conditional UPDATE on the
    current status so concurrent requests cannot both move the same meeting.
    Time windows are evaluated lazily against a caller-supplied ``now``.
    """

    def __init__(
        self,
        db: Session,
        audit: Optional[MeetingAuditLog] = None,
        settings: Optional[Dict] = None,
    ):
        self.db = db
        self.audit = audit or MeetingAuditLog(db)
        self.settings = settings or get_schedule_settings()
        self.grace_period = timedelta(minutes=self.settings["grace_period_minutes"])

    # --- Reads ---

    def get(self, meeting_id: str) -> Optional[ScheduledMeeting]:
        if not meeting_id:
            return None
        return (
            self.db.query(ScheduledMeeting)
            .filter(ScheduledMeeting.meeting_id == meeting_id)
            .one_or_none()
        )

    def get_or_404(self, meeting_id: str) -> ScheduledMeeting:
        meeting = self.get(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        return meeting

    def get_owned(self, meeting_id: str, owner_uid: str) -> ScheduledMeeting:
        meeting = self.get_or_404(meeting_id)
        if meeting.owner_uid != owner_uid:
            raise UnauthorizedError("Only the meeting owner may view this meeting")
        return meeting

    # --- Time windows ---

    def grace_deadline(self, meeting: ScheduledMeeting) -> datetime:
        return as_utc(meeting.end_at) + self.grace_period

    def is_past_grace(self, meeting: ScheduledMeeting, now: datetime) -> bool:
        """True once the meeting can no longer be joined, whatever its status says."""
        now = as_utc(now)
        expires_at = as_utc(meeting.expires_at)
        if expires_at is not None and now > expires_at:
            return True
        return now > self.grace_deadline(meeting)

    def early_join_at(self, meeting: ScheduledMeeting) -> datetime:
        return as_utc(meeting.start_at) - timedelta(
            minutes=meeting.allow_early_join_min or 0
        )

    # --- Links ---

    def links_for(self, meeting: ScheduledMeeting) -> Dict[str, str]:
        base = self.settings["public_base_url"]
        return {
            "host_link": f"{base}/join/{meeting.meeting_id}?key={meeting.host_join_key}",
            "participant_link": (
                f"{base}/join/{meeting.meeting_id}?key={meeting.participant_join_key}"
            ),
        }

    # --- Transitions ---

    def schedule(
        self,
        owner_uid: str,
        request: ScheduleMeetingRequest,
        now: Optional[datetime] = None,
    ) -> ScheduleMeetingResponse:
        """Create a meeting in the scheduled state with fresh join keys."""
        if not owner_uid:
            raise UnauthorizedError("An authenticated owner is required")
        if request.duration_min <= 0:
            raise InvalidInputError("duration_min must be greater than zero")
        early_join = request.allow_early_join_min
        if early_join is None:
            early_join = self.settings["default_allow_early_join_min"]
        if early_join < 0:
            raise InvalidInputError("allow_early_join_min cannot be negative")

        passcode_hash = None
        if request.require_passcode:
            if not is_valid_passcode(request.passcode or ""):
                raise InvalidInputError("Passcode must be exactly six digits")
            passcode_hash = hash_passcode(request.passcode)

        now = as_utc(now) if now is not None else utc_now()
        start_at = as_utc(request.start_at)
        meeting_id = generate_meeting_id(self.db, now)

        key_bytes = self.settings["join_key_bytes"]
        host_key = generate_join_key(key_bytes)
        participant_key = generate_join_key(key_bytes)
        while participant_key == host_key:
            participant_key = generate_join_key(key_bytes)

        meeting = ScheduledMeeting(
            meeting_id=meeting_id,
            owner_uid=owner_uid,
            status=MeetingStatus.SCHEDULED.value,
            title=request.title,
            description=request.description or None,
            start_at=start_at,
            duration_min=request.duration_min,
            end_at=start_at + timedelta(minutes=request.duration_min),
            timezone=request.timezone,
            allow_early_join_min=early_join,
            require_passcode=request.require_passcode,
            passcode_hash=passcode_hash,
            lobby_enabled=request.lobby_enabled,
            room_name=meeting_id,
            host_join_key=host_key,
            participant_join_key=participant_key,
            expires_at=None,
            attendees=[attendee.model_dump(mode="json") for attendee in request.attendees],
        )
        self.db.add(meeting)
        self.db.commit()
        self.db.refresh(meeting)
        logger.info("Scheduled meeting %s for owner %s", meeting_id, owner_uid)

        self.audit.record(
            meeting_id,
            MeetingLogType.CREATED,
            by_uid=owner_uid,
            meta={"start_at": start_at.isoformat(), "duration_min": request.duration_min},
            at=now,
        )
        links = self.links_for(meeting)
        return ScheduleMeetingResponse(
            meeting_id=meeting.meeting_id,
            room_name=meeting.room_name,
            host_link=links["host_link"],
            participant_link=links["participant_link"],
            start_at=start_at,
            end_at=as_utc(meeting.end_at),
            status=MeetingStatus.SCHEDULED,
        )

    def _transition(
        self,
        meeting: ScheduledMeeting,
        allowed_from: Iterable[MeetingStatus],
        target: MeetingStatus,
        now: datetime,
    ) -> bool:
        values = {"status": target.value, "updated_at": now}
        if target in TERMINAL_MEETING_STATUSES:
            values["expires_at"] = now
        updated = (
            self.db.query(ScheduledMeeting)
            .filter(
                ScheduledMeeting.meeting_id == meeting.meeting_id,
                ScheduledMeeting.status.in_([status.value for status in allowed_from]),
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(meeting)
        return updated == 1

    def _reject_terminal(self, meeting: ScheduledMeeting, action: str) -> None:
        if is_terminal(meeting):
            raise AlreadyTerminalError(
                f"Cannot {action} meeting {meeting.meeting_id}: it is already {meeting.status}",
                reason=meeting.status,
            )

    def start(
        self,
        meeting: ScheduledMeeting,
        by_uid: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduledMeeting:
        """scheduled -> live. Triggered by the host's first authorized join."""
        now = as_utc(now) if now is not None else utc_now()
        self._reject_terminal(meeting, "start")
        if not self._transition(meeting, [MeetingStatus.SCHEDULED], MeetingStatus.LIVE, now):
            self._reject_terminal(meeting, "start")
            raise ConflictError(
                f"Meeting {meeting.meeting_id} is already live", reason=meeting.status
            )
        logger.info("Meeting %s is live", meeting.meeting_id)
        self.audit.record(
            meeting.meeting_id, MeetingLogType.STARTED, by_uid=by_uid, at=now
        )
        return meeting

    def end(
        self,
        meeting: ScheduledMeeting,
        by_uid: Optional[str] = None,
        host_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduledMeeting:
        """scheduled|live -> ended, by the owner or a holder of the host key."""
        now = as_utc(now) if now is not None else utc_now()
        is_owner = bool(by_uid) and by_uid == meeting.owner_uid
        role = Role.HOST if is_owner else role_for_key(meeting, host_key)
        if role is None or not has_capability(role, Capability.END_MEETING):
            raise UnauthorizedError(
                "Only the owner or a host key holder may end this meeting"
            )
        self._reject_terminal(meeting, "end")
        if not self._transition(
            meeting,
            [MeetingStatus.SCHEDULED, MeetingStatus.LIVE],
            MeetingStatus.ENDED,
            now,
        ):
            self._reject_terminal(meeting, "end")
            raise ConflictError(f"Meeting {meeting.meeting_id} changed concurrently")
        logger.info("Meeting %s ended", meeting.meeting_id)
        self.audit.record(
            meeting.meeting_id,
            MeetingLogType.ENDED,
            by_uid=by_uid,
            meta={"via": "owner" if is_owner else "host_key"},
            at=now,
        )
        return meeting

    def cancel(
        self,
        meeting: ScheduledMeeting,
        by_uid: Optional[str],
        now: Optional[datetime] = None,
    ) -> ScheduledMeeting:
        """scheduled|live -> canceled, by the owner only."""
        now = as_utc(now) if now is not None else utc_now()
        if not by_uid or by_uid != meeting.owner_uid:
            raise UnauthorizedError("Only the meeting owner may cancel this meeting")
        self._reject_terminal(meeting, "cancel")
        if not self._transition(
            meeting,
            [MeetingStatus.SCHEDULED, MeetingStatus.LIVE],
            MeetingStatus.CANCELED,
            now,
        ):
            self._reject_terminal(meeting, "cancel")
            raise ConflictError(f"Meeting {meeting.meeting_id} changed concurrently")
        logger.info("Meeting %s canceled", meeting.meeting_id)
        self.audit.record(
            meeting.meeting_id, MeetingLogType.CANCELED, by_uid=by_uid, at=now
        )
        return meeting

    def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """
        Move scheduled/live meetings whose grace period has elapsed to ended.

        Joins already treat such meetings as expired; this only brings the
        stored status in line for listings and reports. Not run automatically.
        """
        now = as_utc(now) if now is not None else utc_now()
        cutoff = now - self.grace_period
        candidates = (
            self.db.query(ScheduledMeeting)
            .filter(
                ScheduledMeeting.status.in_(
                    [MeetingStatus.SCHEDULED.value, MeetingStatus.LIVE.value]
                ),
                ScheduledMeeting.end_at < cutoff,
            )
            .all()
        )
        expired: List[str] = []
        for meeting in candidates:
            if not self.is_past_grace(meeting, now):
                continue
            if self._transition(
                meeting,
                [MeetingStatus.SCHEDULED, MeetingStatus.LIVE],
                MeetingStatus.ENDED,
                now,
            ):
                expired.append(meeting.meeting_id)
                self.audit.record(
                    meeting.meeting_id,
                    MeetingLogType.ENDED,
                    meta={"via": "grace_elapsed"},
                    at=now,
                )
        if expired:
            logger.info("Expired %d stale meetings", len(expired))
        return expired


def get_meeting_lifecycle(db: Session = Depends(get_db)) -> MeetingLifecycle:
    """Dependency provider for MeetingLifecycle."""
    return MeetingLifecycle(db)
