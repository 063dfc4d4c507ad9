"""Session store — durable record of issued and revoked sessions.

Learn: This is the single source of truth for token validity. Only
TokenService talks to it. Writes are conditional UPDATEs, so the
database serializes conflicting writers for us:

    UPDATE auth_sessions SET revoked_at = :now
    WHERE id = :sid AND revoked_at IS NULL

Two concurrent revokes of the same session both "succeed": one changes
the row, the other matches nothing, and neither raises.

All reads use populate_existing so a long-lived AsyncSession never serves
a stale revoked_at / session_generation from its identity map.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from warden.db.models import AuthSession, User


class SessionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Reads ─────────────────────────────────────────────

    async def get(self, session_id: uuid.UUID) -> Optional[AuthSession]:
        result = await self.db.execute(
            select(AuthSession)
            .where(AuthSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_with_user(
        self, session_id: uuid.UUID
    ) -> Optional[tuple[AuthSession, User]]:
        """Session and its owner in one round-trip."""
        result = await self.db.execute(
            select(AuthSession, User)
            .join(User, User.id == AuthSession.user_id)
            .where(AuthSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def get_by_refresh_hash(
        self, refresh_token_hash: str
    ) -> Optional[tuple[AuthSession, User]]:
        result = await self.db.execute(
            select(AuthSession, User)
            .join(User, User.id == AuthSession.user_id)
            .where(AuthSession.refresh_token_hash == refresh_token_hash)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def current_generation(self, user_id: uuid.UUID) -> Optional[int]:
        result = await self.db.execute(
            select(User.session_generation).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_active(self, user_id: uuid.UUID, now: datetime) -> list[AuthSession]:
        result = await self.db.execute(
            select(AuthSession)
            .where(
                AuthSession.user_id == user_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > now,
            )
            .order_by(AuthSession.issued_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ─── Writes ────────────────────────────────────────────

    async def create(
        self,
        *,
        user_id: uuid.UUID,
        generation: int,
        issued_at: datetime,
        expires_at: datetime,
        refresh_token_hash: str,
        refresh_expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthSession:
        session = AuthSession(
            user_id=user_id,
            generation=generation,
            issued_at=issued_at,
            expires_at=expires_at,
            refresh_token_hash=refresh_token_hash,
            refresh_expires_at=refresh_expires_at,
            user_agent=user_agent[:255] if user_agent else None,
            ip_address=ip_address,
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def mark_revoked(
        self, session_id: uuid.UUID, reason: str, now: datetime
    ) -> bool:
        """Revoke one session. Returns True only for the caller that changed it."""
        result = await self.db.execute(
            update(AuthSession)
            .where(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
            .values(revoked_at=now, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_user_sessions(
        self, user_id: uuid.UUID, reason: str, now: datetime
    ) -> int:
        result = await self.db.execute(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
            .values(revoked_at=now, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def bump_generation(self, user_id: uuid.UUID) -> bool:
        """Invalidate every session issued under the current generation.

        Learn: On PostgreSQL this UPDATE also takes the user row lock, so
        concurrent revoke_all calls for the same user queue up behind it.
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(session_generation=User.session_generation + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def purge(self, dead_before: datetime) -> int:
        """Delete sessions that can no longer be used or refreshed.

        A session is dead once its refresh window has closed or once it was
        revoked. Only rows dead since before `dead_before` are removed.
        """
        result = await self.db.execute(
            delete(AuthSession)
            .where(
                or_(
                    AuthSession.refresh_expires_at < dead_before,
                    AuthSession.revoked_at < dead_before,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
