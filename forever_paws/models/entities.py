"""Synced entity models (remote is authoritative, local store is a cache)"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncedEntity(BaseModel):
    """
    Shared shape of Pet, MemorialVideo and Letter.

    `id` is stable across local and remote. `local_revision` is bumped locally
    every time reconciliation overwrites the row and is never sent anywhere.
    """

    model_config = ConfigDict(extra="ignore")

    # Fields that reconciliation never takes from the remote payload
    LOCAL_FIELDS: ClassVar[Tuple[str, ...]] = ("id", "user_id", "local_revision")

    id: str
    user_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    local_revision: int = 0

    @model_validator(mode="before")
    @classmethod
    def _camel_user_id(cls, v):
        if isinstance(v, dict) and not v.get("user_id") and v.get("userId"):
            v = dict(v)
            v["user_id"] = v["userId"]
        return v

    @classmethod
    def mutable_fields(cls) -> List[str]:
        return [name for name in cls.model_fields if name not in cls.LOCAL_FIELDS]

    @classmethod
    def from_remote(cls, payload: Dict[str, Any], user_id: str):
        """Build from a remote record, filling user_id when the payload omits it."""
        data = dict(payload)
        if not data.get("user_id") and not data.get("userId"):
            data["user_id"] = user_id
        data.pop("local_revision", None)
        return cls.model_validate(data)

    def mutable_values(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.mutable_fields()}

    def differs_from(self, other: "SyncedEntity") -> bool:
        return self.mutable_values() != other.mutable_values()


class Pet(SyncedEntity):
    name: str
    type: str = "other"  # dog, cat, bird, fish, rabbit, hamster, other
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    date_of_passing: Optional[date] = None
    description: Optional[str] = None
    personality: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    is_memorial: bool = False

    @model_validator(mode="before")
    @classmethod
    def _null_collections(cls, v):
        if isinstance(v, dict):
            v = dict(v)
            if v.get("photos") is None:
                v["photos"] = []
            if v.get("is_memorial") is None:
                v["is_memorial"] = False
        return v


class MemorialVideo(SyncedEntity):
    """A memorial video generation job."""
    pet_id: str
    prompt: str = ""
    status: str = "pending"  # pending, processing, completed, failed
    progress: Optional[int] = None
    video_url: Optional[str] = None
    style: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[float] = None
    error_message: Optional[str] = None
    original_images: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _null_collections(cls, v):
        if isinstance(v, dict) and v.get("original_images") is None:
            v = dict(v)
            v["original_images"] = []
        return v


class Letter(SyncedEntity):
    pet_id: str
    content: str
    type: Optional[str] = None  # memorial, birthday, anniversary, daily, ai_reply
    mood: Optional[str] = None  # happy, sad, loving, nostalgic, grateful
    parent_letter_id: Optional[str] = None
    replied_at: Optional[datetime] = None
