"""
Typed request/response schemas for the gateway and direct backend endpoints.

Gateway responses are wrapped in {code, message, data}; the helpers here
accept both the wrapped and the bare form.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


ENVELOPE_KEYS = {"code", "message", "success", "status", "data"}


def unwrap_envelope(body: Any) -> Any:
    """Return body["data"] for {code, message, data} envelopes, else body."""
    if isinstance(body, dict) and "data" in body and set(body) <= ENVELOPE_KEYS:
        return body["data"]
    return body


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    display_name: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    email: str


class DirectSignupRequest(BaseModel):
    email: str
    password: str
    data: Dict[str, Any] = Field(default_factory=dict)


class RemoteUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    display_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, v):
        if not isinstance(v, dict):
            return v
        data = dict(v)
        if not data.get("id") and data.get("userId"):
            data["id"] = data["userId"]
        if not data.get("display_name"):
            metadata = data.get("user_metadata") or {}
            data["display_name"] = (
                data.get("displayName")
                or metadata.get("display_name")
                or metadata.get("name")
            )
        if data.get("email") is None:
            data["email"] = ""
        return data


class GatewayAuthResponse(BaseModel):
    """Body of POST /auth/login and POST /auth/register (after unwrapping)."""
    model_config = ConfigDict(extra="ignore")

    user: RemoteUser
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class GatewayRegisterResponse(GatewayAuthResponse):
    """Body of POST /auth/register. No token when email confirmation is pending."""

    access_token: Optional[str] = None


class ValidateResponse(BaseModel):
    """Body of GET /auth/validate (after unwrapping)."""
    model_config = ConfigDict(extra="ignore")

    user: RemoteUser

    @model_validator(mode="before")
    @classmethod
    def _bare_user(cls, v):
        if isinstance(v, dict) and "user" not in v and "id" in v:
            return {"user": v}
        return v


class DirectTokenResponse(BaseModel):
    """Body of POST /auth/v1/token?grant_type=password."""
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user: RemoteUser

    @model_validator(mode="before")
    @classmethod
    def _flat_user(cls, v):
        # Some deployments return id/email at the top level
        if isinstance(v, dict) and "user" not in v and "id" in v:
            data = dict(v)
            data["user"] = {k: v[k] for k in ("id", "email", "user_metadata", "display_name") if k in v}
            return data
        return v


class DirectSignupResponse(BaseModel):
    """
    Body of POST /auth/v1/signup.

    When email confirmation is enabled no access_token is returned and
    confirmation_sent_at is set.
    """
    model_config = ConfigDict(extra="ignore")

    user: Optional[RemoteUser] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    confirmation_sent_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, v):
        if not isinstance(v, dict):
            return v
        data = dict(v)
        session = data.pop("session", None) or {}
        for key in ("access_token", "refresh_token", "expires_in"):
            if data.get(key) is None and session.get(key) is not None:
                data[key] = session[key]
        user = data.get("user")
        if user is None and "id" in data:
            data["user"] = {k: v[k] for k in ("id", "email", "user_metadata", "display_name") if k in v}
            user = data["user"]
        if data.get("confirmation_sent_at") is None and isinstance(user, dict):
            data["confirmation_sent_at"] = user.get("confirmation_sent_at")
        return data

    @property
    def confirmation_required(self) -> bool:
        return not self.access_token and self.confirmation_sent_at is not None


class CollectionResponse(BaseModel):
    """Body of GET /{collection}: {data: [...]}."""
    model_config = ConfigDict(extra="ignore")

    data: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def parse(cls, body: Any, collection: str) -> "CollectionResponse":
        if isinstance(body, list):
            return cls(data=body)
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected {collection} response shape: {type(body).__name__}")
        data = body.get("data", [])
        if isinstance(data, dict):
            for key in (collection, "items", "results"):
                if isinstance(data.get(key), list):
                    return cls(data=data[key])
            raise ValueError(f"No record list in {collection} response")
        return cls(data=data or [])


def error_message(body: Any, default: str) -> str:
    """Best-effort extraction of an error message from an error body."""
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return default
