from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func  # For default timestamps

from ..database import Base
from ..schemas.meeting import MeetingStatus


class ScheduledMeeting(Base):
    __tablename__ = "scheduled_meetings"
    __table_args__ = (
        UniqueConstraint("host_join_key", name="uq_scheduled_meetings_host_key"),
        UniqueConstraint(
            "participant_join_key", name="uq_scheduled_meetings_participant_key"
        ),
    )

    meeting_id = Column(String(20), primary_key=True, index=True)
    owner_uid = Column(String(128), nullable=False, index=True)
    status = Column(String(16), default=MeetingStatus.SCHEDULED.value, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=False)
    duration_min = Column(Integer, nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    timezone = Column(String(64), default="UTC", nullable=False)
    allow_early_join_min = Column(Integer, default=10, nullable=False)
    require_passcode = Column(Boolean, default=False, nullable=False)
    passcode_hash = Column(String(255), nullable=True)
    lobby_enabled = Column(Boolean, default=True, nullable=False)
    room_name = Column(String(64), nullable=False)
    host_join_key = Column(String(128), nullable=False)
    participant_join_key = Column(String(128), nullable=False)
    # Stamped exactly when the meeting becomes ended or canceled
    expires_at = Column(DateTime(timezone=True), nullable=True)
    attendees = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    logs = relationship(
        "MeetingLog",
        back_populates="meeting",
        order_by="MeetingLog.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"ScheduledMeeting(meeting_id={self.meeting_id!r}, "
            f"status={self.status!r}, owner_uid={self.owner_uid!r})"
        )


class MeetingLog(Base):
    """Append-only audit trail of lifecycle and authorization events."""

    __tablename__ = "meeting_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(
        String(20),
        ForeignKey("scheduled_meetings.meeting_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(32), nullable=False, index=True)
    at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    by_uid = Column(String(128), nullable=True)
    meta = Column(JSON, nullable=True)

    meeting = relationship("ScheduledMeeting", back_populates="logs")
