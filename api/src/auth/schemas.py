"""Pydantic schemas for the authenticated principal."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """Identity extracted from a validated access token."""

    id: UUID
    email: str
    role: str
    name: str | None = None
    issued_at: datetime | None = None
