"""Pydantic schemas for users, tiers and avatars."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from warden.auth.tiers import Tier
from warden.config import settings
from warden.db.models import User
from warden.storage import public_url


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    tier: Tier
    avatar_url: Optional[str] = None
    avatar_updated_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserRead":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            tier=Tier.parse(user.tier),
            avatar_url=public_url(
                user.avatar_key, user.avatar_version, settings.storage_public_base_url
            ),
            avatar_updated_at=user.avatar_updated_at,
            created_at=user.created_at,
        )


class UserUpdate(BaseModel):
    name: str = Field(..., max_length=100)


class TierUpdate(BaseModel):
    tier: Tier


class AvatarRead(BaseModel):
    user_id: uuid.UUID
    key: str
    version: str
    content_type: str
    size: int
    url: str
    updated_at: datetime


class AvatarRemoved(BaseModel):
    removed: bool
