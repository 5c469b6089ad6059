import re
import secrets

from passlib.context import CryptContext

# Passcode Hashing Context
# pbkdf2_sha256 ships with passlib itself, so no native backend is required
passcode_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSCODE_PATTERN = re.compile(r"^[0-9]{6}$")


def is_valid_passcode(passcode: str) -> bool:
    """Return True when the passcode is exactly six ASCII digits."""
    return bool(passcode) and PASSCODE_PATTERN.fullmatch(passcode) is not None


def hash_passcode(passcode: str) -> str:
    """
    Generates a one-way digest for a meeting passcode.
    Args:
        passcode: The plain six digit passcode.
    Returns:
        The salted digest to store on the meeting.
    """
    return passcode_context.hash(passcode.strip())


def verify_passcode(plain_passcode: str, passcode_hash: str) -> bool:
    """
    Verifies a passcode attempt against a stored digest.
    Args:
        plain_passcode: The passcode attempt.
        passcode_hash: The stored digest to compare against.
    Returns:
        True if the passcode matches the digest, False otherwise.
    """
    if not plain_passcode or not passcode_hash:
        return False
    try:
        return passcode_context.verify(plain_passcode.strip(), passcode_hash)
    except (ValueError, TypeError):
        return False


def generate_join_key(num_bytes: int = 30) -> str:
    """Return an unguessable URL-safe join key."""
    return secrets.token_urlsafe(num_bytes)
