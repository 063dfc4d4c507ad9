"""Token service — issue, validate, refresh and revoke sessions.

Learn: The lifecycle of one login:

  issue()    → new auth_sessions row + JWT access token + refresh token
  validate() → JWT signature/exp, then the session row, on EVERY request
  refresh()  → single-use rotation: old session revoked, new one issued
  revoke()   → conditional UPDATE, idempotent
  expiry     → expires_at re-checked against the clock in validate()

revoke_all() is the account-wide kill switch (logout-all, tier change).
It bumps users.session_generation and revokes every live row in one
transaction. A session issued concurrently copied either the old
generation (so it's dead on arrival) or the new one (so it was issued
after the sweep). There is no window in which it silently survives.

Callers outside the trust boundary only ever see AuthenticationFailure
with a generic message. The reason ("revoked", "expired", "unknown", ...)
is logged, not returned.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NoReturn, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.identity import Principal
from warden.auth.jwt import TokenError, create_access_token, decode_access_token
from warden.auth.session_store import SessionStore
from warden.auth.tiers import Tier
from warden.config import settings
from warden.db.models import utcnow
from warden.errors import AuthenticationFailure, NotFound
from warden.events.store import EventStore, user_stream
from warden.events.types import (
    SESSION_REFRESHED,
    SESSION_REVOKED,
    SESSIONS_REVOKED_ALL,
)

logger = structlog.get_logger()


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedTokens:
    """What a successful login or refresh hands back to the client."""

    access_token: str
    refresh_token: str
    session_id: uuid.UUID
    user_id: uuid.UUID
    expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"


class TokenService:
    """Owns every state transition of auth_sessions."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        access_ttl: Optional[timedelta] = None,
        refresh_ttl: Optional[timedelta] = None,
    ):
        self.db = db
        self.store = SessionStore(db)
        self.events = EventStore(db)
        self.access_ttl = access_ttl or timedelta(
            minutes=settings.access_token_expire_minutes
        )
        self.refresh_ttl = refresh_ttl or timedelta(
            days=settings.refresh_token_expire_days
        )

    # ─── Issue ─────────────────────────────────────────────

    async def issue(
        self,
        user_id: uuid.UUID,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        commit: bool = True,
    ) -> IssuedTokens:
        """Create a fresh session for user_id. Never reuses a prior token."""
        generation = await self.store.current_generation(user_id)
        if generation is None:
            raise NotFound("User not found")

        now = utcnow()
        refresh_token = secrets.token_urlsafe(32)
        session = await self.store.create(
            user_id=user_id,
            generation=generation,
            issued_at=now,
            expires_at=now + self.access_ttl,
            refresh_token_hash=hash_refresh_token(refresh_token),
            refresh_expires_at=now + self.refresh_ttl,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        if commit:
            await self.db.commit()

        access_token = create_access_token(
            user_id=user_id,
            session_id=session.id,
            issued_at=session.issued_at,
            expires_at=session.expires_at,
        )
        logger.info(
            "auth.session_issued",
            user_id=str(user_id),
            session_id=str(session.id),
            expires_at=session.expires_at.isoformat(),
        )
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=session.id,
            user_id=user_id,
            expires_at=session.expires_at,
            refresh_expires_at=session.refresh_expires_at,
        )

    # ─── Validate ──────────────────────────────────────────

    async def validate(self, token: str) -> Principal:
        """Resolve a bearer token to a Principal or raise AuthenticationFailure."""
        try:
            claims = decode_access_token(token)
        except TokenError as e:
            self._reject(e.reason)

        row = await self.store.get_with_user(claims.session_id)
        if row is None:
            self._reject("unknown", session_id=claims.session_id)
        session, user = row

        if session.user_id != claims.user_id:
            self._reject("subject_mismatch", session_id=session.id)
        if session.revoked_at is not None:
            self._reject("revoked", session_id=session.id, revoke_reason=session.revoke_reason)
        if session.expires_at <= utcnow():
            self._reject("expired", session_id=session.id)
        if session.generation != user.session_generation:
            self._reject("superseded", session_id=session.id)

        return Principal(
            user_id=user.id,
            tier=Tier.parse(user.tier),
            session_id=session.id,
            email=user.email,
        )

    def _reject(self, reason: str, **context) -> NoReturn:
        logger.info(
            "auth.token_rejected",
            reason=reason,
            **{k: str(v) if isinstance(v, uuid.UUID) else v for k, v in context.items()},
        )
        raise AuthenticationFailure()

    # ─── Refresh ───────────────────────────────────────────

    async def refresh(
        self,
        refresh_token: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> IssuedTokens:
        """Rotate a refresh token. Each refresh token works exactly once."""
        row = await self.store.get_by_refresh_hash(hash_refresh_token(refresh_token))
        if row is None:
            self._reject("unknown_refresh")
        session, user = row

        now = utcnow()
        if session.revoked_at is not None:
            self._reject("refresh_revoked", session_id=session.id, revoke_reason=session.revoke_reason)
        if session.refresh_expires_at <= now:
            self._reject("refresh_expired", session_id=session.id)
        if session.generation != user.session_generation:
            self._reject("superseded", session_id=session.id)

        # rollback() expires loaded rows, so read ids before it can run.
        session_id, user_id = session.id, user.id

        # Only one concurrent presenter can win the conditional update.
        if not await self.store.mark_revoked(session_id, "rotated", now):
            await self.db.rollback()
            self._reject("refresh_race", session_id=session_id)

        issued = await self.issue(
            user_id, user_agent=user_agent, ip_address=ip_address, commit=False
        )
        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=SESSION_REFRESHED,
            data={
                "old_session_id": str(session_id),
                "new_session_id": str(issued.session_id),
            },
        )
        await self.db.commit()
        return issued

    # ─── Revoke ────────────────────────────────────────────

    async def revoke(self, token: str, reason: str = "logout") -> bool:
        """Revoke the session behind an access token.

        Idempotent: malformed, unknown and already-revoked tokens are not
        errors. Expired tokens are still revoked (the signature must verify).
        Returns True only if this call changed the session.
        """
        try:
            claims = decode_access_token(token, verify_exp=False)
        except TokenError:
            return False
        return await self.revoke_session(claims.session_id, reason=reason)

    async def revoke_session(
        self, session_id: uuid.UUID, reason: str = "logout", *, commit: bool = True
    ) -> bool:
        session = await self.store.get(session_id)
        if session is None:
            return False

        changed = await self.store.mark_revoked(session_id, reason, utcnow())
        if changed:
            await self.events.append(
                stream_id=user_stream(session.user_id),
                event_type=SESSION_REVOKED,
                data={"session_id": str(session_id), "reason": reason},
            )
        if commit:
            await self.db.commit()

        if changed:
            logger.info(
                "auth.session_revoked",
                user_id=str(session.user_id),
                session_id=str(session_id),
                reason=reason,
            )
        return changed

    async def revoke_all(
        self, user_id: uuid.UUID, reason: str, *, commit: bool = True
    ) -> int:
        """Invalidate every session of user_id. Returns how many were live.

        Learn: The generation bump and the sweep commit together. Any
        validate() that starts after this returns sees both.
        """
        if not await self.store.bump_generation(user_id):
            return 0

        count = await self.store.revoke_user_sessions(user_id, reason, utcnow())
        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=SESSIONS_REVOKED_ALL,
            data={"reason": reason, "revoked": count},
        )
        if commit:
            await self.db.commit()

        logger.info(
            "auth.sessions_revoked_all",
            user_id=str(user_id),
            reason=reason,
            revoked=count,
        )
        return count

    # ─── Listing & hygiene ─────────────────────────────────

    async def active_sessions(self, user_id: uuid.UUID) -> list:
        sessions = await self.store.list_active(user_id, utcnow())
        generation = await self.store.current_generation(user_id)
        return [s for s in sessions if s.generation == generation]

    async def purge_expired(self, grace: timedelta) -> int:
        """Delete sessions dead for longer than `grace`. Storage hygiene only."""
        count = await self.store.purge(utcnow() - grace)
        await self.db.commit()
        if count:
            logger.info("auth.sessions_purged", count=count)
        return count
