"""Media grants in the conferencing service's access-token format.

The conferencing service accepts an HS256 JWT signed with its API secret,
issued by its API key, whose ``video`` claim lists the room and the rights
the holder has in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, Optional

from jose import jwt

from app.auth.auth import ROLE_CAPABILITIES
from app.config.loader import get_media_settings
from app.schemas.schemas import Capability, Role
from app.utils.clock import as_utc, utc_now
from app.utils.identifiers import generate_media_identity

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Grant claim name for each capability the transport understands.
_VIDEO_GRANT_CLAIMS = {
    Capability.JOIN: "roomJoin",
    Capability.PUBLISH: "canPublish",
    Capability.SUBSCRIBE: "canSubscribe",
    Capability.PUBLISH_DATA: "canPublishData",
    Capability.UPDATE_OWN_METADATA: "canUpdateOwnMetadata",
    Capability.ROOM_ADMIN: "roomAdmin",
}


@dataclass(frozen=True)
class MediaGrant:
    token: str
    identity: str
    room_name: str
    role: Role
    ws_url: str
    expires_at: datetime


def video_grant_for(role: Role, room_name: str) -> Dict[str, Any]:
    capabilities = ROLE_CAPABILITIES[Role(role)]
    grant: Dict[str, Any] = {"room": room_name}
    for capability, claim in _VIDEO_GRANT_CLAIMS.items():
        if capability in capabilities:
            grant[claim] = True
    return grant


class MediaGrantIssuer:
    """Signs scoped media grants for one conferencing deployment."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        ws_url: str,
        ttl_minutes: int = 360,
    ):
        if not api_key or not api_secret:
            raise ValueError("Media API key and secret are required")
        self.api_key = api_key
        self._api_secret = api_secret
        self.ws_url = ws_url
        self.ttl = timedelta(minutes=ttl_minutes)

    def issue(
        self,
        role: Role,
        room_name: str,
        display_name: Optional[str],
        *,
        identity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MediaGrant:
        role = Role(role)
        issued_at = as_utc(now) if now is not None else utc_now()
        expires_at = issued_at + self.ttl
        identity = identity or generate_media_identity(role.value, display_name)
        claims = {
            "iss": self.api_key,
            "sub": identity,
            "name": display_name or identity,
            "nbf": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "video": video_grant_for(role, room_name),
        }
        token = jwt.encode(claims, self._api_secret, algorithm=ALGORITHM)
        logger.debug("Issued %s media grant for %s in %s", role.value, identity, room_name)
        return MediaGrant(
            token=token,
            identity=identity,
            room_name=room_name,
            role=role,
            ws_url=self.ws_url,
            expires_at=expires_at,
        )

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify and return the claims of a grant this issuer signed."""
        return jwt.decode(
            token,
            self._api_secret,
            algorithms=[ALGORITHM],
            issuer=self.api_key,
            options={"verify_aud": False},
        )


@lru_cache(maxsize=1)
def get_media_grant_issuer() -> MediaGrantIssuer:
    settings = get_media_settings()
    return MediaGrantIssuer(
        settings["api_key"],
        settings["api_secret"],
        settings["ws_url"],
        ttl_minutes=settings["grant_ttl_minutes"],
    )
