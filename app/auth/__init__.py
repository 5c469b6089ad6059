from .auth import (
    Identity,
    create_identity_token,
    decode_identity_token,
    get_bearer_token,
    get_current_identity,
    get_optional_identity,
    ROLE_CAPABILITIES,
    has_capability,
    SECRET_KEY,
    ALGORITHM,
    JWT_ISSUER,
)

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
