from datetime import datetime, UTC

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from ..database import Base


class Invite(Base):
    __tablename__ = "invites"
    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_invites_used_non_negative"),
        CheckConstraint("used <= max_uses", name="ck_invites_used_within_limit"),
    )

    invite_id = Column(String(20), primary_key=True, index=True)
    room_id = Column(
        String(20),
        ForeignKey("rooms.room_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by = Column(String(128), nullable=False)
    role = Column(String(16), nullable=False)
    max_uses = Column(Integer, nullable=False, default=1)
    used = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
