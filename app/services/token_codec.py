"""Signed, self-verifying invitation tokens.

A token is the base64url encoding of::

    inviteId:roomId:role:expiresAt:kid.signature

``expiresAt`` uses the ISO-8601 basic format in UTC so it never contains the
``:`` delimiter, and ``signature`` is a hex HMAC-SHA256 over the first four
fields computed with the secret registered under ``kid``.  Carrying the key id
lets retired secrets keep verifying outstanding tokens after a rotation.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, UTC
from functools import lru_cache
from typing import Dict, Mapping, Optional

from app.config.loader import get_invite_settings, is_production_mode
from app.schemas.schemas import Role
from app.services.errors import BadSignature, InvalidInputError, MalformedToken, TokenExpired
from app.utils.clock import as_utc, utc_now

logger = logging.getLogger(__name__)

DELIMITER = ":"
KEY_ID_SEPARATOR = "."
EXPIRES_AT_FORMAT = "%Y%m%dT%H%M%S.%fZ"
_EXPIRES_AT_FALLBACK_FORMAT = "%Y%m%dT%H%M%SZ"
MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class InvitePayload:
    invite_id: str
    room_id: str
    role: Role
    expires_at: datetime


def format_expires_at(value: datetime) -> str:
    return as_utc(value).strftime(EXPIRES_AT_FORMAT)


def parse_expires_at(value: str) -> datetime:
    for fmt in (EXPIRES_AT_FORMAT, _EXPIRES_AT_FALLBACK_FORMAT):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    raise MalformedToken("Token expiry is not a valid timestamp")


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)


class InvitationTokenCodec:
    """Signs and verifies invitation tokens with a keyed hash."""

    def __init__(
        self,
        secret: str,
        key_id: str = "k1",
        retired_keys: Optional[Mapping[str, str]] = None,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        if not key_id or DELIMITER in key_id or KEY_ID_SEPARATOR in key_id:
            raise ValueError("Key id must be non-empty and free of ':' and '.'")
        self.key_id = key_id
        self._keys: Dict[str, bytes] = {
            str(kid): str(value).encode("utf-8")
            for kid, value in (retired_keys or {}).items()
        }
        self._keys[key_id] = secret.encode("utf-8")

    def _signature(self, key: bytes, signed: bytes) -> bytes:
        return hmac.new(key, signed, hashlib.sha256).hexdigest().encode("ascii")

    def sign(
        self,
        invite_id: str,
        room_id: str,
        role: Role | str,
        expires_at: datetime,
    ) -> str:
        try:
            role_value = Role(role).value
        except ValueError as exc:
            raise InvalidInputError(f"Unknown role '{role}'") from exc
        for name, value in (("invite_id", invite_id), ("room_id", room_id)):
            if not value:
                raise InvalidInputError(f"{name} is required")
            if DELIMITER in value:
                raise InvalidInputError(f"{name} must not contain '{DELIMITER}'")
        if expires_at is None:
            raise InvalidInputError("expires_at is required")

        payload = DELIMITER.join(
            [invite_id, room_id, role_value, format_expires_at(expires_at)]
        ).encode("utf-8")
        signature = self._signature(self._keys[self.key_id], payload)
        signed_field = self.key_id.encode("utf-8") + b"." + signature
        return _b64url_encode(payload + b":" + signed_field)

    def verify(self, token: str, now: Optional[datetime] = None) -> InvitePayload:
        if not token or not isinstance(token, str):
            raise MalformedToken("Token is empty")
        try:
            decoded = _b64url_decode(token.strip())
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise MalformedToken("Token is not valid base64url") from exc
        # Unused low bits of the last character are ignored by the decoder, so
        # only the canonical spelling of the bytes is accepted.
        if _b64url_encode(decoded) != token.strip():
            raise BadSignature("Invalid token signature")

        # The signature is checked over raw bytes before any field parsing so
        # that every tampered token is reported as a signature failure.
        signed, sep, signed_field = decoded.rpartition(b":")
        if not sep or not signed:
            raise MalformedToken("Token is missing its signature")
        kid_raw, _, presented = signed_field.partition(b".")
        key = self._keys.get(kid_raw.decode("utf-8", errors="replace"))
        if key is None:
            # Compare anyway so an unknown key id costs the same as a mismatch.
            hmac.compare_digest(presented, self._signature(b"", signed))
            raise BadSignature("Invalid token signature")
        if not hmac.compare_digest(presented, self._signature(key, signed)):
            raise BadSignature("Invalid token signature")

        fields = signed.split(b":")
        if len(fields) != 4 or not all(fields):
            raise MalformedToken("Token must carry exactly four signed fields")
        try:
            invite_id, room_id, role_raw, expires_raw = (
                field.decode("utf-8") for field in fields
            )
        except UnicodeDecodeError as exc:
            raise MalformedToken("Token fields are not valid UTF-8") from exc
        try:
            role = Role(role_raw)
        except ValueError as exc:
            raise MalformedToken(f"Unknown role '{role_raw}' in token") from exc

        expires_at = parse_expires_at(expires_raw)
        current = as_utc(now) if now is not None else utc_now()
        if expires_at < current:
            raise TokenExpired("Token has expired")
        return InvitePayload(
            invite_id=invite_id,
            room_id=room_id,
            role=role,
            expires_at=expires_at,
        )


def generate_dev_key() -> str:
    """Generate a signing secret for development environments ONLY."""
    key = secrets.token_urlsafe(48)
    logger.warning(
        "DEVELOPMENT MODE: using a generated invitation signing secret. "
        "Outstanding invite links stop verifying on restart. "
        "Set MEETGATE_INVITE_SIGNING_SECRET for production."
    )
    return key


@lru_cache(maxsize=1)
def get_invite_codec() -> InvitationTokenCodec:
    settings = get_invite_settings()
    secret = settings["signing_secret"]
    if not secret:
        if is_production_mode():
            raise RuntimeError(
                "Missing MEETGATE_INVITE_SIGNING_SECRET while MEETGATE_ENV is set "
                "to production. Configure a strong static secret before startup."
            )
        secret = generate_dev_key()
    elif len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            "Invalid invitation signing secret configuration. "
            f"The secret must be at least {MIN_SECRET_LENGTH} characters long."
        )
    return InvitationTokenCodec(
        secret,
        key_id=settings["key_id"],
        retired_keys=settings["retired_keys"],
    )
