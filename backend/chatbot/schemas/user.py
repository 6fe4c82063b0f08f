"""Caller identity schema."""

from pydantic import BaseModel


class UserIdentity(BaseModel):
    """Identity resolved from the session token; never persisted."""

    id: str
    email: str = ""
