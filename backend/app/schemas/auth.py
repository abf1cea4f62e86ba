"""Schemas for authentication endpoints."""

from pydantic import BaseModel, Field, constr

USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserCreate(BaseModel):
    """Payload for creating a new user via registration."""

    username: constr(strip_whitespace=True, min_length=3, max_length=32, pattern=USERNAME_PATTERN) = Field(
        ..., description="Unique username made of letters, digits and underscores"
    )
    email: constr(strip_whitespace=True, to_lower=True, max_length=255, pattern=EMAIL_PATTERN) = Field(
        ..., description="Unique e-mail address"
    )
    password: constr(min_length=8, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )


class LoginRequest(BaseModel):
    """Payload for user login."""

    username: constr(strip_whitespace=True, min_length=3, max_length=32) = Field(..., description="Username")
    password: constr(min_length=1, max_length=128) = Field(..., description="User password")


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )
