"""Users API — profiles, tiers and avatars.

Learn: Every route here is guarded by authorize("<operation>"). Whether
that means "admin only" or "yourself or an admin" is decided by the
policy table, not by the handler. Handlers only translate HTTP to
service calls.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.dependencies import authorize
from warden.auth.identity import Principal
from warden.config import settings
from warden.db.engine import get_db
from warden.schemas.user import (
    AvatarRead,
    AvatarRemoved,
    TierUpdate,
    UserRead,
    UserUpdate,
)
from warden.services.avatar_service import AvatarUploadCoordinator, discard_object
from warden.services.user_service import UserService
from warden.storage import ObjectStorage, get_storage, public_url

router = APIRouter(prefix="/users")

_CHUNK = 64 * 1024


async def _read_limited(file: UploadFile, limit: int) -> bytes:
    """Read at most limit + 1 bytes of the upload into memory.

    Starlette has already spooled the whole multipart body (to a temp
    file past 1MB) by the time the handler runs. This bounds what is held
    as bytes, not what was received; cap request bodies at the proxy.
    """
    chunks = []
    total = 0
    while total <= limit:
        chunk = await file.read(min(_CHUNK, limit + 1 - total))
        if not chunk:
            break
        chunks.append(chunk)
        total += len(chunk)
    return b"".join(chunks)


# ─── Accounts ────────────────────────────────────────────


@router.get("", response_model=list[UserRead])
async def list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(authorize("users.list")),
    db: AsyncSession = Depends(get_db),
):
    users = await UserService(db).list_users(limit=limit, offset=offset)
    return [UserRead.from_user(u) for u in users]


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: uuid.UUID,
    _: Principal = Depends(authorize("users.read")),
    db: AsyncSession = Depends(get_db),
):
    user = await UserService(db).get(user_id)
    return UserRead.from_user(user)


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    _: Principal = Depends(authorize("users.update")),
    db: AsyncSession = Depends(get_db),
):
    user = await UserService(db).update_profile(user_id, body.name)
    return UserRead.from_user(user)


@router.put("/{user_id}/tier", response_model=UserRead)
async def set_tier(
    user_id: uuid.UUID,
    body: TierUpdate,
    principal: Principal = Depends(authorize("users.set_tier")),
    db: AsyncSession = Depends(get_db),
):
    """Change a user's tier. All of the target's sessions are revoked if it changed."""
    user = await UserService(db).set_tier(principal, user_id, body.tier)
    return UserRead.from_user(user)


@router.delete("/{user_id}", status_code=200)
async def delete_user(
    user_id: uuid.UUID,
    _: Principal = Depends(authorize("users.delete")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    avatar_key = await UserService(db).delete(user_id)
    if avatar_key:
        await discard_object(storage, avatar_key)
    return {"deleted": True}


# ─── Avatars ─────────────────────────────────────────────


@router.put("/{user_id}/avatar", response_model=AvatarRead)
async def upload_avatar(
    user_id: uuid.UUID,
    file: UploadFile = File(...),
    size: Optional[int] = Form(None),
    _: Principal = Depends(authorize("users.upload_avatar")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Upload or replace an avatar (multipart field `file`).

    `size` may be sent alongside the file; if it is, it must match what
    actually arrived.
    """
    data = await _read_limited(file, settings.avatar_max_bytes)
    declared = size if size is not None else file.size
    ref = await AvatarUploadCoordinator(db, storage).upload(
        user_id, data, file.content_type or "", declared
    )
    return AvatarRead(
        user_id=ref.user_id,
        key=ref.key,
        version=ref.version,
        content_type=ref.content_type,
        size=ref.size,
        url=public_url(ref.key, ref.version, settings.storage_public_base_url),
        updated_at=ref.updated_at,
    )


@router.delete("/{user_id}/avatar", response_model=AvatarRemoved)
async def delete_avatar(
    user_id: uuid.UUID,
    _: Principal = Depends(authorize("users.delete_avatar")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    removed = await AvatarUploadCoordinator(db, storage).remove(user_id)
    return AvatarRemoved(removed=removed)
