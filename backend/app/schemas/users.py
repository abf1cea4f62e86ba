"""Schemas describing users as other people see them."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PublicUser(BaseModel):
    """Minimal public-facing user information."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    avatar: str | None = None


class UserRead(PublicUser):
    """Detailed representation of the current user."""

    email: str
    bio: str | None = None
    created_at: datetime
    updated_at: datetime
