"""Service layer for the MeetGate access-control engine."""

from .errors import (
    AccessControlError,
    AlreadyTerminalError,
    BadSignature,
    ConflictError,
    DeniedError,
    ExpiredError,
    InvalidInputError,
    MalformedToken,
    NotFoundError,
    TokenExpired,
    UnauthorizedError,
)  # noqa: F401

__all__ = [
    "AccessControlError",
    "AlreadyTerminalError",
    "BadSignature",
    "ConflictError",
    "DeniedError",
    "ExpiredError",
    "InvalidInputError",
    "MalformedToken",
    "NotFoundError",
    "TokenExpired",
    "UnauthorizedError",
]
