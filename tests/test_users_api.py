"""Users API tests — policy table in action, tier transitions.

Learn: Every protected route goes through authorize("<operation>").
These tests pin down the three outcomes that matter:
  no/dead token → 401, valid token but wrong tier/owner → 403, else 2xx.
"""

import uuid

import pytest

from conftest import PASSWORD, bearer
from warden.auth.tiers import Tier


# ═══════════════════════════════════════════════════════════
# End-to-end: tier change revokes sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_alice_promotion_revokes_her_old_token(client, make_user, login):
    """register alice → T1 → non-admin tier change is 403 →
    admin T2 promotes alice → T1 no longer validates."""
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": "alice@example.com", "name": "Alice", "password": PASSWORD},
    )
    assert r.status_code == 201
    alice_id = r.json()["id"]

    t1 = (await login("alice@example.com"))["access_token"]

    r = await client.put(
        f"/api/v1/users/{alice_id}/tier", json={"tier": "admin"}, headers=bearer(t1)
    )
    assert r.status_code == 403
    assert r.json()["error"] == "authorization_failed"

    admin = await make_user("root@example.com", tier=Tier.ADMIN)
    t2 = (await login(admin.email))["access_token"]

    r = await client.put(
        f"/api/v1/users/{alice_id}/tier", json={"tier": "admin"}, headers=bearer(t2)
    )
    assert r.status_code == 200
    assert r.json()["tier"] == "admin"

    r = await client.get("/api/v1/auth/me", headers=bearer(t1))
    assert r.status_code == 401

    # The admin's own session is untouched
    r = await client.get("/api/v1/auth/me", headers=bearer(t2))
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_demoted_admin_never_keeps_admin_access(client, make_user, login):
    root = await make_user(tier=Tier.ADMIN)
    other = await make_user(tier=Tier.ADMIN)
    root_token = (await login(root.email))["access_token"]
    other_token = (await login(other.email))["access_token"]

    # other can list users while admin
    r = await client.get("/api/v1/users", headers=bearer(other_token))
    assert r.status_code == 200

    r = await client.put(
        f"/api/v1/users/{other.id}/tier",
        json={"tier": "standard"},
        headers=bearer(root_token),
    )
    assert r.status_code == 200

    # Old token is dead, not downgraded
    r = await client.get("/api/v1/users", headers=bearer(other_token))
    assert r.status_code == 401

    # A new login gets the new tier
    fresh = (await login(other.email))["access_token"]
    r = await client.get("/api/v1/users", headers=bearer(fresh))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_set_same_tier_keeps_sessions(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    bob = await make_user()
    admin_token = (await login(admin.email))["access_token"]
    bob_token = (await login(bob.email))["access_token"]

    r = await client.put(
        f"/api/v1/users/{bob.id}/tier",
        json={"tier": "standard"},
        headers=bearer(admin_token),
    )
    assert r.status_code == 200
    r = await client.get("/api/v1/auth/me", headers=bearer(bob_token))
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_cannot_demote_last_admin(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    token = (await login(admin.email))["access_token"]

    r = await client.put(
        f"/api/v1/users/{admin.id}/tier",
        json={"tier": "standard"},
        headers=bearer(token),
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "Cannot demote the last admin"

    # Nothing changed, including the session
    r = await client.get("/api/v1/auth/me", headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["tier"] == "admin"


@pytest.mark.asyncio
async def test_set_tier_unknown_user(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    token = (await login(admin.email))["access_token"]
    r = await client.put(
        f"/api/v1/users/{uuid.uuid4()}/tier",
        json={"tier": "admin"},
        headers=bearer(token),
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_set_tier_rejects_unknown_tier(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    bob = await make_user()
    token = (await login(admin.email))["access_token"]
    r = await client.put(
        f"/api/v1/users/{bob.id}/tier",
        json={"tier": "superuser"},
        headers=bearer(token),
    )
    assert r.status_code == 422


# ═══════════════════════════════════════════════════════════
# Self-or-admin
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_user_can_read_self_but_not_others(client, make_user, login):
    alice = await make_user()
    bob = await make_user()
    token = (await login(alice.email))["access_token"]

    r = await client.get(f"/api/v1/users/{alice.id}", headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["id"] == str(alice.id)

    r = await client.get(f"/api/v1/users/{bob.id}", headers=bearer(token))
    assert r.status_code == 403
    # Same generic body whether or not the target exists
    r2 = await client.get(f"/api/v1/users/{uuid.uuid4()}", headers=bearer(token))
    assert r2.status_code == 403
    assert r.json() == r2.json()


@pytest.mark.asyncio
async def test_admin_can_read_anyone(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    bob = await make_user()
    token = (await login(admin.email))["access_token"]

    r = await client.get(f"/api/v1/users/{bob.id}", headers=bearer(token))
    assert r.status_code == 200
    r = await client.get(f"/api/v1/users/{uuid.uuid4()}", headers=bearer(token))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_update_own_profile(client, make_user, login):
    alice = await make_user(name="Alice")
    token = (await login(alice.email))["access_token"]

    r = await client.patch(
        f"/api/v1/users/{alice.id}", json={"name": "  Alice L.  "}, headers=bearer(token)
    )
    assert r.status_code == 200
    assert r.json()["name"] == "Alice L."
    assert r.json()["tier"] == "standard"


@pytest.mark.asyncio
async def test_update_profile_rejects_blank_name(client, make_user, login):
    alice = await make_user()
    token = (await login(alice.email))["access_token"]
    r = await client.patch(
        f"/api/v1/users/{alice.id}", json={"name": "   "}, headers=bearer(token)
    )
    assert r.status_code == 422
    assert r.json()["field_errors"]["name"]


@pytest.mark.asyncio
async def test_cannot_update_someone_else(client, make_user, login):
    alice = await make_user()
    bob = await make_user(name="Bob")
    token = (await login(alice.email))["access_token"]
    r = await client.patch(
        f"/api/v1/users/{bob.id}", json={"name": "Hacked"}, headers=bearer(token)
    )
    assert r.status_code == 403


# ═══════════════════════════════════════════════════════════
# Admin-only
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_users_requires_admin(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    alice = await make_user()

    r = await client.get("/api/v1/users")
    assert r.status_code == 401

    r = await client.get(
        "/api/v1/users", headers=bearer((await login(alice.email))["access_token"])
    )
    assert r.status_code == 403

    r = await client.get(
        "/api/v1/users", headers=bearer((await login(admin.email))["access_token"])
    )
    assert r.status_code == 200
    emails = {u["email"] for u in r.json()}
    assert {admin.email, alice.email} <= emails


@pytest.mark.asyncio
async def test_delete_user_kills_sessions(client, make_user, login):
    admin = await make_user(tier=Tier.ADMIN)
    bob = await make_user()
    admin_token = (await login(admin.email))["access_token"]
    bob_token = (await login(bob.email))["access_token"]

    r = await client.delete(f"/api/v1/users/{bob.id}", headers=bearer(admin_token))
    assert r.status_code == 200

    r = await client.get("/api/v1/auth/me", headers=bearer(bob_token))
    assert r.status_code == 401
    r = await client.get(f"/api/v1/users/{bob.id}", headers=bearer(admin_token))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_standard_user_cannot_delete(client, make_user, login):
    alice = await make_user()
    token = (await login(alice.email))["access_token"]
    r = await client.delete(f"/api/v1/users/{alice.id}", headers=bearer(token))
    assert r.status_code == 403
