"""Core helpers shared across the API."""

from .security import (
    access_token_lifetime,
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)

__all__ = [
    "access_token_lifetime",
    "create_access_token",
    "decode_access_token",
    "get_password_hash",
    "verify_password",
]
