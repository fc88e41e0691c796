"""Session models"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    LOGGED_IN = "logged_in"


class AuthSource(str, Enum):
    """Which tier of the endpoint ladder issued the token."""
    GATEWAY = "gateway"
    ALTERNATE_GATEWAY = "alternate_gateway"
    DIRECT = "direct"


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    user_id: str
    email: str
    display_name: Optional[str] = None
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: AuthSource = AuthSource.GATEWAY

    def __repr__(self) -> str:
        # Never print tokens
        return f"Session(user_id={self.user_id!r}, email={self.email!r}, source={self.source.value!r})"

    __str__ = __repr__


class RememberedCredentials(BaseModel):
    email: str
    password: str

    def __repr__(self) -> str:
        return f"RememberedCredentials(email={self.email!r})"

    __str__ = __repr__


class SignUpResult(BaseModel):
    """
    Outcome of sign-up. A pending email confirmation is a success with no
    session, not an error.
    """
    session: Optional[Session] = None
    confirmation_required: bool = False
    message: str = ""
