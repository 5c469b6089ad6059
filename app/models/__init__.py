# Import models to make them accessible via app.models
# and ensure they are registered with SQLAlchemy's Base metadata
from .meeting import ScheduledMeeting, MeetingLog
from .room import Room, RoomParticipant
from .invite import Invite

__all__ = [
    "ScheduledMeeting",
    "MeetingLog",
    "Room",
    "RoomParticipant",
    "Invite",
]
