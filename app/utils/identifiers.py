import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.models.meeting import ScheduledMeeting

MEETING_ID_PREFIX = "MTG"
MEETING_ID_SUFFIX_WIDTH = 4

ROOM_ID_PREFIX = "RM"
ROOM_ID_LENGTH = 10

INVITE_ID_PREFIX = "INV"
INVITE_ID_LENGTH = 12

IDENTITY_RANDOM_BYTES = 6
IDENTITY_NAME_MAX_LENGTH = 32

_ALPHABET = string.ascii_lowercase + string.digits


def _format_base36(number: int) -> str:
    if number < 0:
        raise ValueError("number must be non-negative")
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    if number == 0:
        return "0"
    result = []
    while number:
        number, remainder = divmod(number, 36)
        result.append(digits[remainder])
    return "".join(reversed(result))


def _short_id(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _next_meeting_sequence(db: Session, date_prefix: str) -> int:
    like_pattern = f"{date_prefix}-%"
    latest: Optional[str] = (
        db.query(ScheduledMeeting.meeting_id)
        .filter(ScheduledMeeting.meeting_id.like(like_pattern))
        .order_by(ScheduledMeeting.meeting_id.desc())
        .limit(1)
        .scalar()
    )
    if not latest:
        return 1
    try:
        suffix = latest.split("-")[-1]
        return int(suffix, 36) + 1
    except (ValueError, IndexError):
        return 1


def generate_meeting_id(db: Session, created_at: Optional[datetime] = None) -> str:
    """
    Construct a unique meeting identifier with the format MTGYYYYMMDD-XXXX
    where the suffix is a zero-padded base36 sequence scoped to the given day.
    The identifier doubles as the media room name.
    """
    timestamp = (created_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
    date_prefix = f"{MEETING_ID_PREFIX}{timestamp:%Y%m%d}"
    sequence = _next_meeting_sequence(db, date_prefix)
    suffix = _format_base36(sequence).upper().rjust(MEETING_ID_SUFFIX_WIDTH, "0")
    return f"{date_prefix}-{suffix}"


def generate_room_id() -> str:
    return f"{ROOM_ID_PREFIX}-{_short_id(ROOM_ID_LENGTH)}"


def generate_invite_id() -> str:
    return f"{INVITE_ID_PREFIX}-{_short_id(INVITE_ID_LENGTH)}"


def _slugify_display_name(value: Optional[str]) -> str:
    text = (value or "").strip().lower()
    slug = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    return (slug or "guest")[:IDENTITY_NAME_MAX_LENGTH]


def generate_media_identity(role: str, display_name: Optional[str]) -> str:
    """
    Build a media identity of the form ROLE-RANDOM-NAME.
    The random middle part keeps two simultaneous joins with the same
    display name from colliding in the conferencing room.
    """
    nonce = secrets.token_hex(IDENTITY_RANDOM_BYTES)
    return f"{role}-{nonce}-{_slugify_display_name(display_name)}"
