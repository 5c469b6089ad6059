from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..schemas.room import RoomStatus
from ..schemas.schemas import Role


class Room(Base):
    __tablename__ = "rooms"

    room_id = Column(String(20), primary_key=True, index=True)
    owner_uid = Column(String(128), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    status = Column(String(16), default=RoomStatus.OPEN.value, nullable=False)
    waiting_room = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    participants = relationship(
        "RoomParticipant",
        back_populates="room",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class RoomParticipant(Base):
    """
    Participant record for one identity in one room.

    Only the record with superseded_at IS NULL is current; older records
    stay behind as the admission history for that identity.
    """

    __tablename__ = "room_participants"
    __table_args__ = (
        Index("ix_room_participants_room_uid", "room_id", "uid"),
        Index("ix_room_participants_room_lobby", "room_id", "lobby_status"),
    )

    participant_id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(
        String(20),
        ForeignKey("rooms.room_id", ondelete="CASCADE"),
        nullable=False,
    )
    uid = Column(String(128), nullable=False)
    display_name = Column(String(100), nullable=True)
    role = Column(String(16), default=Role.PARTICIPANT.value, nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    lobby_status = Column(String(16), nullable=True)
    admitted_at = Column(DateTime(timezone=True), nullable=True)
    denied_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    room = relationship("Room", back_populates="participants")

    def __repr__(self) -> str:
        return (
            f"RoomParticipant(room_id={self.room_id!r}, uid={self.uid!r}, "
            f"role={self.role!r}, lobby_status={self.lobby_status!r})"
        )
