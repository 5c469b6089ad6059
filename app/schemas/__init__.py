from .schemas import (
    Role,
    Capability,
    ErrorResponse,
)

__all__ = [
    "Role",
    "Capability",
    "ErrorResponse",
]
