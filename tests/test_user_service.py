"""User service tests — the last-admin guard under concurrent writers.

Learn: Each service below gets its own session (its own connection), so
the two transactions genuinely overlap. Whichever commits first wins;
the other must see that write and refuse.
"""

import asyncio

import pytest
from sqlalchemy import select

from warden.auth.identity import Principal
from warden.auth.tiers import Tier
from warden.db.models import User
from warden.errors import ConflictFailure
from warden.services.user_service import UserService


def _admin(user) -> Principal:
    return Principal(user_id=user.id, tier=Tier.ADMIN, session_id=user.id, email=user.email)


async def _admin_ids(session_factory) -> list:
    async with session_factory() as db:
        result = await db.execute(select(User.id).where(User.tier == Tier.ADMIN.value))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_admins_demoting_each_other_leave_one_admin(session_factory, make_user):
    alice = await make_user(tier=Tier.ADMIN)
    bob = await make_user(tier=Tier.ADMIN)

    async with session_factory() as a, session_factory() as b:
        results = await asyncio.gather(
            UserService(a).set_tier(_admin(alice), bob.id, Tier.STANDARD),
            UserService(b).set_tier(_admin(bob), alice.id, Tier.STANDARD),
            return_exceptions=True,
        )

    conflicts = [r for r in results if isinstance(r, ConflictFailure)]
    assert len(conflicts) == 1
    assert conflicts[0].message == "Cannot demote the last admin"
    assert len(await _admin_ids(session_factory)) == 1


@pytest.mark.asyncio
async def test_delete_racing_a_demotion_leaves_one_admin(session_factory, make_user):
    alice = await make_user(tier=Tier.ADMIN)
    bob = await make_user(tier=Tier.ADMIN)

    async with session_factory() as a, session_factory() as b:
        results = await asyncio.gather(
            UserService(a).delete(bob.id),
            UserService(b).set_tier(_admin(bob), alice.id, Tier.STANDARD),
            return_exceptions=True,
        )

    assert sum(isinstance(r, ConflictFailure) for r in results) == 1
    assert len(await _admin_ids(session_factory)) == 1


@pytest.mark.asyncio
async def test_demotion_with_another_admin_left(db_session, make_user):
    alice = await make_user(tier=Tier.ADMIN)
    bob = await make_user(tier=Tier.ADMIN)

    user = await UserService(db_session).set_tier(_admin(alice), bob.id, Tier.STANDARD)

    assert user.tier == Tier.STANDARD.value
    with pytest.raises(ConflictFailure):
        await UserService(db_session).set_tier(_admin(alice), alice.id, Tier.STANDARD)


@pytest.mark.asyncio
async def test_cannot_delete_last_admin(session_factory, make_user):
    alice = await make_user(tier=Tier.ADMIN)

    async with session_factory() as db:
        with pytest.raises(ConflictFailure):
            await UserService(db).delete(alice.id)

    assert await _admin_ids(session_factory) == [alice.id]
