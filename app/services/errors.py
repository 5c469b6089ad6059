from __future__ import annotations

from typing import Optional


class AccessControlError(Exception):
    """Base class for domain failures reported synchronously to the caller."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_payload(self) -> dict:
        payload = {"error": self.code, "detail": self.message}
        if self.reason:
            payload["reason"] = self.reason
        return payload


class NotFoundError(AccessControlError):
    code = "not_found"
    status_code = 404


class UnauthorizedError(AccessControlError):
    code = "unauthorized"
    status_code = 403


class InvalidInputError(AccessControlError, ValueError):
    code = "invalid_input"
    status_code = 400


class ExpiredError(AccessControlError):
    code = "expired"
    status_code = 410


class ConflictError(AccessControlError):
    code = "conflict"
    status_code = 409


class AlreadyTerminalError(ConflictError):
    code = "already_terminal"


class DeniedError(AccessControlError):
    code = "denied"
    status_code = 403


class MalformedToken(InvalidInputError):
    code = "malformed_token"


class BadSignature(UnauthorizedError):
    code = "bad_signature"
    status_code = 401


class TokenExpired(ExpiredError):
    code = "token_expired"
