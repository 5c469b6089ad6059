from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional
from fastapi import Depends, HTTPException, status, Request
from datetime import datetime, timedelta, UTC
from jose import JWTError, jwt
import os
import logging
from app.schemas.schemas import Capability, Role
from app.config.loader import get_identity_settings, is_production_mode

# Set up a dedicated logger for authentication events
logger = logging.getLogger("auth_module")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


# --- Configuration ---
def generate_dev_key() -> str:
    """Generate a secure default key for development environments ONLY."""
    import secrets

    key = secrets.token_urlsafe(48)  # 48 bytes = 64 characters
    logger.warning(
        "\n"
        + "*" * 80
        + "\n"
        + "DEVELOPMENT MODE: Using generated identity secret.\n"
        + "Bearer tokens issued elsewhere will not verify against it.\n"
        + "Set MEETGATE_IDENTITY_SECRET in your environment variables for production.\n"
        + "*" * 80
    )
    return key


def validate_secret_key(key: str) -> bool:
    """Validate that an identity secret meets minimum security requirements."""
    if not key:
        return False
    if len(key) < 32:
        logger.error("Identity secret must be at least 32 characters long for security.")
        return False
    return True


_identity_settings = get_identity_settings()
SECRET_KEY = _identity_settings["secret"]
ALGORITHM = "HS256"
JWT_ISSUER = _identity_settings["issuer"]
JWT_AUDIENCE = _identity_settings["audience"]
IDENTITY_TOKEN_EXPIRE_MINUTES = 30

if not SECRET_KEY:
    if is_production_mode():
        raise RuntimeError(
            "Missing MEETGATE_IDENTITY_SECRET while MEETGATE_ENV is set to production. "
            + "Configure the identity provider's shared secret before startup."
        )
    SECRET_KEY = generate_dev_key()
elif not validate_secret_key(SECRET_KEY):
    raise RuntimeError(
        "Invalid identity secret configuration. "
        + "The key must be at least 32 characters long. "
        + "Update MEETGATE_IDENTITY_SECRET in your environment variables."
    )
else:
    logger.info("Identity secret validated and loaded.")


@dataclass(frozen=True)
class Identity:
    """A verified caller. Produced only by the bearer-token verifier."""

    uid: str
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or (self.email.split("@")[0] if self.email else self.uid)


# --- Token Utilities ---


def create_identity_token(
    uid: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a bearer token the verifier accepts.
    Identity tokens normally come from the external identity provider; this
    exists for local development and tests.
    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=IDENTITY_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": uid, "exp": expire, "iat": now, "iss": JWT_ISSUER}
    if name:
        claims["name"] = name
    if email:
        claims["email"] = email
    if JWT_AUDIENCE:
        claims["aud"] = JWT_AUDIENCE
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_identity_token(token: str) -> Identity:
    """Verify a bearer token and return the identity it names. Raises JWTError."""
    options = {} if JWT_AUDIENCE else {"verify_aud": False}
    payload = jwt.decode(
        token,
        SECRET_KEY,
        algorithms=[ALGORITHM],
        issuer=JWT_ISSUER,
        audience=JWT_AUDIENCE,
        options=options,
    )
    uid = payload.get("sub")
    if not uid:
        raise JWTError("'sub' claim missing in identity token")
    return Identity(uid=str(uid), name=payload.get("name"), email=payload.get("email"))


async def get_bearer_token(request: Request) -> Optional[str]:
    """
    Extracts the bearer credential from the Authorization header, falling
    back to the 'access_token' cookie.
    """
    header = request.headers.get("Authorization")
    if header and header.lower().startswith("bearer "):
        return header.split(" ", 1)[1].strip() or None

    token_with_prefix = request.cookies.get("access_token")
    if not token_with_prefix:
        logger.debug("No bearer header or 'access_token' cookie found in request.")
        return None
    if token_with_prefix.startswith("Bearer "):
        return token_with_prefix.split(" ", 1)[1]
    return token_with_prefix


# --- Identity Dependencies ---


async def get_current_identity(
    token: Optional[str] = Depends(get_bearer_token),
) -> Identity:
    """
    FastAPI dependency returning the verified caller.
    Raises 401 if the credential is missing or does not verify.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials. Invalid or expired token.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        logger.warning("Authentication required: no bearer credential presented.")
        raise credentials_exception

    try:
        identity = decode_identity_token(token)
    except JWTError as e:
        logger.warning(f"Identity token rejected: {str(e)}")
        raise credentials_exception

    logger.debug(f"Identity verified for uid: {identity.uid}")
    return identity


async def get_optional_identity(
    token: Optional[str] = Depends(get_bearer_token),
) -> Optional[Identity]:
    """Like get_current_identity but returns None instead of failing."""
    if not token:
        return None
    try:
        return decode_identity_token(token)
    except JWTError:
        logger.debug("Optional identity token did not verify; continuing anonymously.")
        return None


# --- Role Capabilities ---

# Both roles may take part in media; only hosts administer the room.
PARTICIPANT_CAPABILITIES: FrozenSet[Capability] = frozenset(
    {
        Capability.JOIN,
        Capability.PUBLISH,
        Capability.SUBSCRIBE,
        Capability.PUBLISH_DATA,
        Capability.UPDATE_OWN_METADATA,
    }
)
HOST_CAPABILITIES: FrozenSet[Capability] = PARTICIPANT_CAPABILITIES | {
    Capability.ROOM_ADMIN,
    Capability.ADMIT_LOBBY,
    Capability.MANAGE_INVITES,
    Capability.END_MEETING,
}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.HOST: HOST_CAPABILITIES,
    Role.PARTICIPANT: PARTICIPANT_CAPABILITIES,
}


def has_capability(role: Role, capability: Capability) -> bool:
    """Checks if a role carries a specific capability."""
    allowed = capability in ROLE_CAPABILITIES.get(Role(role), frozenset())
    logger.debug(
        f"Capability check: role '{Role(role).value}' requires '{capability.value}': {allowed}"
    )
    return allowed


__all__ = [
    "Identity",
    "create_identity_token",
    "decode_identity_token",
    "get_bearer_token",
    "get_current_identity",
    "get_optional_identity",
    "ROLE_CAPABILITIES",
    "has_capability",
    "SECRET_KEY",
    "ALGORITHM",
    "JWT_ISSUER",
]
