"""User service — accounts, credentials and tier transitions.

Learn: Routes and the CLI both go through here, never straight to the
User table. Writes that can race with other writers (tier, profile) are
column-scoped UPDATEs, so an avatar upload landing at the same moment
doesn't get its columns clobbered by a stale ORM flush.

Tier transitions are the one place where account state and session state
change together: set_tier() writes the new tier and calls
TokenService.revoke_all() inside the SAME transaction. Either both land
or neither does, so a demoted admin can never keep a live admin session.
"""

import re
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.identity import Principal
from warden.auth.password import (
    burn_verify,
    hash_password,
    needs_upgrade,
    verify_password,
)
from warden.auth.tiers import Tier
from warden.config import settings
from warden.db.models import User
from warden.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    ConflictFailure,
    NotFound,
    ValidationFailure,
)
from warden.events.store import EventStore, user_stream
from warden.events.types import (
    LOGIN_FAILED,
    LOGIN_SUCCEEDED,
    USER_DELETED,
    USER_REGISTERED,
    USER_TIER_CHANGED,
    USER_UPDATED,
)
from warden.services.token_service import IssuedTokens, TokenService

logger = structlog.get_logger()

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Business logic for user accounts."""

    def __init__(self, db: AsyncSession, tokens: Optional[TokenService] = None):
        self.db = db
        self.events = EventStore(db)
        self.tokens = tokens or TokenService(db)

    # ─── Registration ───────────────────────────────────

    async def create_user(
        self,
        email: str,
        name: str,
        password: str,
        tier: Tier = Tier.STANDARD,
    ) -> User:
        email = normalize_email(email)
        name = name.strip()

        field_errors = {}
        if not _EMAIL_RE.match(email):
            field_errors["email"] = "Not a valid email address"
        if not name:
            field_errors["name"] = "Name must not be empty"
        elif len(name) > 100:
            field_errors["name"] = "Name must be at most 100 characters"
        if len(password) < settings.password_min_length:
            field_errors["password"] = (
                f"Password must be at least {settings.password_min_length} characters"
            )
        if field_errors:
            raise ValidationFailure("Invalid registration data", field_errors=field_errors)

        if await self.get_by_email(email) is not None:
            raise ConflictFailure("Email already registered")

        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            tier=tier.value,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email.
            await self.db.rollback()
            raise ConflictFailure("Email already registered")

        await self.events.append(
            stream_id=user_stream(user.id),
            event_type=USER_REGISTERED,
            data={"email": email, "tier": tier.value},
        )
        await self.db.commit()

        logger.info("user.registered", user_id=str(user.id), tier=tier.value)
        return user

    async def register(self, email: str, name: str, password: str) -> User:
        """Self-service signup. Always creates a standard-tier account."""
        return await self.create_user(email, name, password)

    # ─── Credentials ────────────────────────────────────

    async def authenticate(self, email: str, password: str) -> User:
        """Check email + password. Unknown email and wrong password look identical."""
        email = normalize_email(email)
        user = await self.get_by_email(email)

        if user is None:
            burn_verify(password)
            logger.info("auth.login_failed", reason="unknown_email")
            raise AuthenticationFailure("Invalid credentials")

        if not verify_password(password, user.password_hash):
            await self.events.append(
                stream_id=user_stream(user.id),
                event_type=LOGIN_FAILED,
                data={"reason": "bad_password"},
            )
            await self.db.commit()
            logger.info("auth.login_failed", reason="bad_password", user_id=str(user.id))
            raise AuthenticationFailure("Invalid credentials")

        if needs_upgrade(user.password_hash):
            await self.db.execute(
                update(User)
                .where(User.id == user.id)
                .values(password_hash=hash_password(password))
                .execution_options(synchronize_session=False)
            )
            logger.info("auth.password_rehashed", user_id=str(user.id))

        return user

    async def login(
        self,
        email: str,
        password: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> tuple[User, IssuedTokens]:
        user = await self.authenticate(email, password)
        issued = await self.tokens.issue(
            user.id, user_agent=user_agent, ip_address=ip_address, commit=False
        )
        await self.events.append(
            stream_id=user_stream(user.id),
            event_type=LOGIN_SUCCEEDED,
            data={"session_id": str(issued.session_id)},
            metadata={"ip_address": ip_address} if ip_address else None,
        )
        await self.db.commit()
        logger.info(
            "auth.login_succeeded",
            user_id=str(user.id),
            session_id=str(issued.session_id),
        )
        return user, issued

    # ─── Reads ──────────────────────────────────────────

    async def get(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        user = result.scalars().first()
        if user is None:
            raise NotFound("User not found")
        return user

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User)
            .where(User.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_users(self, limit: int = 50, offset: int = 0) -> list[User]:
        result = await self.db.execute(
            select(User).order_by(User.created_at, User.email).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    # ─── Updates ────────────────────────────────────────

    async def update_profile(self, user_id: uuid.UUID, name: str) -> User:
        name = name.strip()
        if not name:
            raise ValidationFailure(
                "Invalid profile data", field_errors={"name": "Name must not be empty"}
            )
        if len(name) > 100:
            raise ValidationFailure(
                "Invalid profile data",
                field_errors={"name": "Name must be at most 100 characters"},
            )

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(name=name)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise NotFound("User not found")

        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=USER_UPDATED,
            data={"fields": ["name"]},
        )
        await self.db.commit()
        return await self.get(user_id)

    async def set_tier(
        self, actor: Principal, target_user_id: uuid.UUID, new_tier: Tier
    ) -> User:
        """Change a user's tier. Revokes all their sessions if it changed.

        Learn: A demotion locks every admin row (in id order) before it
        touches the target, so two admins demoting each other queue on
        the same locks instead of each holding a different row. The new
        tier is written before the remaining admins are counted; the count
        therefore includes this transaction's write and, once the locks are
        granted, any rival demotion that committed first.
        """
        if not actor.is_admin:
            raise AuthorizationFailure()

        if new_tier != Tier.ADMIN:
            await self._lock_admins()

        result = await self.db.execute(
            select(User.tier)
            .where(User.id == target_user_id)
            .with_for_update()
        )
        current = result.scalar_one_or_none()
        if current is None:
            await self.db.rollback()
            raise NotFound("User not found")

        old_tier = Tier.parse(current)
        if old_tier == new_tier:
            await self.db.rollback()
            return await self.get(target_user_id)

        await self.db.execute(
            update(User)
            .where(User.id == target_user_id)
            .values(tier=new_tier.value)
            .execution_options(synchronize_session=False)
        )
        if old_tier == Tier.ADMIN and await self._count_admins() == 0:
            await self.db.rollback()
            raise ConflictFailure("Cannot demote the last admin")

        await self.events.append(
            stream_id=user_stream(target_user_id),
            event_type=USER_TIER_CHANGED,
            data={"from": old_tier.value, "to": new_tier.value},
            metadata={"actor_id": str(actor.user_id)},
        )
        revoked = await self.tokens.revoke_all(
            target_user_id, reason="tier_changed", commit=False
        )
        await self.db.commit()

        logger.info(
            "user.tier_changed",
            user_id=str(target_user_id),
            actor_id=str(actor.user_id),
            old_tier=old_tier.value,
            new_tier=new_tier.value,
            sessions_revoked=revoked,
        )
        return await self.get(target_user_id)

    # ─── Deletion ───────────────────────────────────────

    async def delete(self, user_id: uuid.UUID) -> Optional[str]:
        """Delete the account. Sessions go with it by cascade.

        Returns the avatar object key the caller should clean up, if any.
        """
        await self._lock_admins()
        try:
            user = await self.get(user_id)
        except NotFound:
            await self.db.rollback()
            raise
        was_admin = user.tier == Tier.ADMIN.value
        email, avatar_key = user.email, user.avatar_key

        await self.db.execute(delete(User).where(User.id == user_id))
        if was_admin and await self._count_admins() == 0:
            await self.db.rollback()
            raise ConflictFailure("Cannot delete the last admin")

        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=USER_DELETED,
            data={"email": email},
        )
        await self.db.commit()

        logger.info("user.deleted", user_id=str(user_id))
        return avatar_key

    # ─── Admin guard ────────────────────────────────────

    async def _lock_admins(self) -> list[uuid.UUID]:
        """Row-lock every admin. SQLite ignores FOR UPDATE; its writers
        already serialize on the database lock."""
        result = await self.db.execute(
            select(User.id)
            .where(User.tier == Tier.ADMIN.value)
            .order_by(User.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def _count_admins(self) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.tier == Tier.ADMIN.value)
        )
        return result.scalar_one()
