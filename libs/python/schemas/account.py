"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, EmailStr


class SessionClaims(BaseModel):
    """Claims carried by a session token issued by the identity service."""

    user_id: str
    email: EmailStr
    role: str
    iat: datetime
    exp: datetime
