"""Avatar upload coordinator — a two-phase write across storage and the DB.

Learn: An avatar lives in two places: the bytes in object storage, the
reference (key + version) on the user row. There is no transaction that
spans both, so the order is fixed:

  1. validate   → nothing touches storage until the payload is known good
  2. store      → put("avatars/<user_id>"), retried with backoff, under a deadline
  3. record     → lock the user row, write the avatar columns, commit

A reference therefore never points at an object that wasn't written.
The opposite failure (object written, record update failed) leaves the
previous reference in place and, at worst, a newer object under the same
key. The next successful upload overwrites it.

Retry rules differ per phase:
  - put() is idempotent (same key, same bytes), so it's retried blindly.
  - The row update is NOT blindly retried. After a failed attempt the
    coordinator first re-reads the row: if its version already landed
    (the commit succeeded but the acknowledgement was lost), it's done.

Two uploads for one user can interleave: A stores, B stores, B records,
A records. The row then carries A's version (and A's content type in
the event log) while the key holds B's bytes. Nothing dangles, the key
is the same either way, and the next upload brings both back in step.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from warden.config import settings
from warden.db.models import User, utcnow
from warden.errors import DependencyFailure, NotFound, ValidationFailure
from warden.events.store import EventStore, user_stream
from warden.events.types import AVATAR_REMOVED, AVATAR_UPDATED
from warden.storage import ObjectStorage, StorageError

logger = structlog.get_logger()

# Transient database errors worth a confirm-then-retry.
_TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)

# ─── Payload sniffing ────────────────────────────────────

_PNG = b"\x89PNG\r\n\x1a\n"
_JPEG = b"\xff\xd8\xff"
_GIF87 = b"GIF87a"
_GIF89 = b"GIF89a"


def sniff_image_type(data: bytes) -> Optional[str]:
    """Content type implied by the payload's magic bytes, or None."""
    if data.startswith(_PNG):
        return "image/png"
    if data.startswith(_JPEG):
        return "image/jpeg"
    if data.startswith(_GIF87) or data.startswith(_GIF89):
        return "image/gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def avatar_key(user_id: uuid.UUID) -> str:
    """One key per user: a re-upload replaces the object instead of adding one."""
    return f"avatars/{user_id}"


@dataclass(frozen=True)
class AvatarRef:
    user_id: uuid.UUID
    key: str
    version: str
    content_type: str
    size: int
    updated_at: datetime


async def discard_object(storage: ObjectStorage, key: str) -> None:
    """Best-effort delete. An orphaned object is harmless; a failed request isn't."""
    try:
        await storage.delete(key)
    except StorageError as e:
        logger.warning("avatar.orphaned", key=key, error=str(e))


class AvatarUploadCoordinator:
    """Runs the validate → store → record sequence for one request."""

    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        *,
        max_bytes: Optional[int] = None,
        content_types: Optional[list[str]] = None,
        timeout: Optional[float] = None,
        storage_attempts: Optional[int] = None,
        record_attempts: Optional[int] = None,
        backoff: Optional[float] = None,
    ):
        self.db = db
        self.storage = storage
        self.events = EventStore(db)
        self.max_bytes = max_bytes if max_bytes is not None else settings.avatar_max_bytes
        self.content_types = content_types or settings.avatar_content_types
        self.timeout = timeout if timeout is not None else settings.avatar_upload_timeout_seconds
        self.storage_attempts = storage_attempts or settings.avatar_storage_attempts
        self.record_attempts = record_attempts or settings.avatar_record_attempts
        self.backoff = backoff if backoff is not None else settings.avatar_retry_backoff_seconds

    # ─── Upload ────────────────────────────────────────────

    async def upload(
        self,
        user_id: uuid.UUID,
        data: bytes,
        content_type: str,
        size: Optional[int] = None,
    ) -> AvatarRef:
        content_type = self.validate(data, content_type, size)
        await self._require_user(user_id)

        key = avatar_key(user_id)
        await self._store(key, data, content_type)

        version = uuid.uuid4().hex
        try:
            updated_at = await self._commit_reference(
                user_id, key, version, content_type, len(data)
            )
        except NotFound:
            # User deleted while the bytes were in flight.
            await discard_object(self.storage, key)
            raise

        logger.info(
            "avatar.updated",
            user_id=str(user_id),
            key=key,
            version=version,
            size=len(data),
        )
        return AvatarRef(
            user_id=user_id,
            key=key,
            version=version,
            content_type=content_type,
            size=len(data),
            updated_at=updated_at,
        )

    def validate(self, data: bytes, content_type: str, size: Optional[int] = None) -> str:
        """Reject bad payloads before any storage call. Returns the normalized type."""
        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type not in self.content_types:
            raise ValidationFailure(
                "Unsupported avatar type",
                field_errors={"file": "Allowed types: " + ", ".join(self.content_types)},
            )
        if len(data) > self.max_bytes or (size or 0) > self.max_bytes:
            raise ValidationFailure(
                "Avatar too large",
                field_errors={"file": f"Maximum size is {self.max_bytes} bytes"},
            )
        if not data:
            raise ValidationFailure("Avatar is empty", field_errors={"file": "File is empty"})
        if size is not None and size != len(data):
            raise ValidationFailure(
                "Avatar size mismatch",
                field_errors={"file": f"Declared {size} bytes, received {len(data)}"},
            )
        if sniff_image_type(data) != content_type:
            raise ValidationFailure(
                "Avatar content does not match its type",
                field_errors={"file": f"File is not a valid {content_type}"},
            )
        return content_type

    async def _require_user(self, user_id: uuid.UUID) -> None:
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        found = result.scalar_one_or_none()
        # End the read transaction; nothing is held open during the store phase.
        await self.db.commit()
        if found is None:
            raise NotFound("User not found")

    # ─── Phase 1: store ────────────────────────────────────

    async def _store(self, key: str, data: bytes, content_type: str) -> None:
        async def put_with_retries() -> None:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.storage_attempts),
                wait=wait_exponential(multiplier=self.backoff, max=self.backoff * 8),
                retry=retry_if_exception_type(StorageError),
                before_sleep=self._log_storage_retry,
                reraise=True,
            ):
                with attempt:
                    await self.storage.put(key, data, content_type)

        try:
            await asyncio.wait_for(put_with_retries(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("avatar.store_timeout", key=key, timeout=self.timeout)
            raise DependencyFailure("Avatar storage timed out, please try again later")
        except StorageError as e:
            logger.warning(
                "avatar.store_failed",
                key=key,
                attempts=self.storage_attempts,
                error=str(e),
            )
            raise DependencyFailure("Avatar storage unavailable, please try again later")

        logger.info("avatar.stored", key=key, size=len(data), backend=self.storage.name)

    @staticmethod
    def _log_storage_retry(retry_state) -> None:
        logger.info(
            "avatar.store_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )

    # ─── Phase 2: record ───────────────────────────────────

    async def _commit_reference(
        self,
        user_id: uuid.UUID,
        key: str,
        version: str,
        content_type: str,
        size: int,
    ) -> datetime:
        for attempt in range(1, self.record_attempts + 1):
            try:
                if attempt > 1:
                    landed_at = await self._reference_landed(user_id, version)
                    if landed_at is not None:
                        logger.info(
                            "avatar.record_confirmed",
                            user_id=str(user_id),
                            version=version,
                            attempt=attempt,
                        )
                        return landed_at
                return await self._apply_reference(
                    user_id, key, version, content_type, size
                )
            except _TRANSIENT_DB_ERRORS as e:
                await self._rollback_quietly()
                logger.warning(
                    "avatar.record_failed",
                    user_id=str(user_id),
                    attempt=attempt,
                    error=str(e),
                )
                if attempt < self.record_attempts:
                    await asyncio.sleep(self.backoff * 2 ** (attempt - 1))

        raise DependencyFailure("Could not save avatar, please try again later")

    async def _reference_landed(
        self, user_id: uuid.UUID, version: str
    ) -> Optional[datetime]:
        result = await self.db.execute(
            select(User.avatar_version, User.avatar_updated_at).where(User.id == user_id)
        )
        row = result.first()
        await self.db.commit()
        if row is None:
            raise NotFound("User not found")
        return row.avatar_updated_at if row.avatar_version == version else None

    async def _apply_reference(
        self,
        user_id: uuid.UUID,
        key: str,
        version: str,
        content_type: str,
        size: int,
    ) -> datetime:
        """Lock the user row, write only the avatar columns, commit.

        Learn: Concurrent uploads for the same user queue on the row lock
        (PostgreSQL) and the last committer wins. The update names only
        the avatar columns so a concurrent tier or profile change survives.
        """
        locked = await self.db.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        )
        if locked.scalar_one_or_none() is None:
            await self.db.rollback()
            raise NotFound("User not found")

        now = utcnow()
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(avatar_key=key, avatar_version=version, avatar_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=AVATAR_UPDATED,
            data={
                "key": key,
                "version": version,
                "content_type": content_type,
                "size": size,
            },
        )
        await self.db.commit()
        return now

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except _TRANSIENT_DB_ERRORS as e:
            logger.warning("avatar.rollback_failed", error=str(e))

    # ─── Remove ────────────────────────────────────────────

    async def remove(self, user_id: uuid.UUID) -> bool:
        """Clear the reference, then delete the object. False if there was none."""
        result = await self.db.execute(
            select(User.avatar_key).where(User.id == user_id).with_for_update()
        )
        row = result.first()
        if row is None:
            await self.db.rollback()
            raise NotFound("User not found")
        key = row.avatar_key
        if key is None:
            await self.db.rollback()
            return False

        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(avatar_key=None, avatar_version=None, avatar_updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=AVATAR_REMOVED,
            data={"key": key},
        )
        await self.db.commit()

        await discard_object(self.storage, key)
        logger.info("avatar.removed", user_id=str(user_id), key=key)
        return True
