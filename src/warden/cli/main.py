"""Warden CLI — operator commands that act directly on the database.

Usage:
    warden init-db                                   # Create tables (dev/SQLite; use alembic in prod)
    warden create-admin ops@example.com --name Ops   # Bootstrap the first admin
    warden users                                     # List accounts
    warden set-tier alice@example.com admin          # Promote / demote (revokes sessions)
    warden revoke-sessions alice@example.com         # Log a user out everywhere
    warden purge-sessions --grace-hours 24           # Delete long-dead sessions

The database comes from --database-url or WARDEN_DATABASE_URL.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import click
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from warden import __version__
from warden.auth.identity import Principal
from warden.auth.tiers import Tier
from warden.config import settings
from warden.db.engine import engine_options, enable_sqlite_foreign_keys
from warden.db.models import Base
from warden.errors import WardenError
from warden.services.token_service import TokenService
from warden.services.user_service import UserService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


@asynccontextmanager
async def _database(database_url: str) -> AsyncIterator[AsyncSession]:
    """One engine + session for the lifetime of a command."""
    engine = create_async_engine(database_url, **engine_options(database_url))
    enable_sqlite_foreign_keys(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as db:
            yield db
    finally:
        await engine.dispose()


def _fail(exc: WardenError) -> None:
    click.secho(f"Error: {exc.message}", fg="red", err=True)
    for field, problem in exc.field_errors.items():
        click.secho(f"  {field}: {problem}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _tier_color(tier: str) -> str:
    return {"admin": "magenta", "standard": "white"}.get(tier, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="warden")
@click.option(
    "--database-url",
    envvar="WARDEN_DATABASE_URL",
    default=settings.database_url,
    show_default=False,
    help="SQLAlchemy async URL (defaults to WARDEN_DATABASE_URL).",
)
@click.pass_context
def main(ctx: click.Context, database_url: str):
    """Warden — operator tools for accounts, tiers and sessions."""
    ctx.obj = {"database_url": database_url}


# ---------------------------------------------------------------------------
# warden init-db
# ---------------------------------------------------------------------------


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create all tables that don't exist yet."""
    _run(_init_db_impl(ctx.obj["database_url"]))
    click.secho("Database initialized", fg="green")


async def _init_db_impl(database_url: str):
    engine = create_async_engine(database_url, **engine_options(database_url))
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# warden create-admin
# ---------------------------------------------------------------------------


@main.command("create-admin")
@click.argument("email")
@click.option("--name", default="Administrator", show_default=True)
@click.password_option(help="Prompted for if omitted.")
@click.pass_context
def create_admin(ctx: click.Context, email: str, name: str, password: str):
    """Create an admin account."""
    user = _run(_create_admin_impl(ctx.obj["database_url"], email, name, password))
    click.secho(f"Admin created: {user['email']} ({user['id']})", fg="green")


async def _create_admin_impl(database_url: str, email: str, name: str, password: str) -> dict:
    async with _database(database_url) as db:
        try:
            user = await UserService(db).create_user(email, name, password, tier=Tier.ADMIN)
        except WardenError as e:
            _fail(e)
        return {"id": str(user.id), "email": user.email}


# ---------------------------------------------------------------------------
# warden users
# ---------------------------------------------------------------------------


@main.command("users")
@click.option("--limit", default=50, show_default=True)
@click.pass_context
def list_users(ctx: click.Context, limit: int):
    """List accounts."""
    rows = _run(_list_users_impl(ctx.obj["database_url"], limit))
    if not rows:
        click.echo("No users.")
        return
    _print_table(rows, [
        ("ID", "id", 36),
        ("EMAIL", "email", 32),
        ("NAME", "name", 20),
        ("TIER", "tier", 8),
    ])


async def _list_users_impl(database_url: str, limit: int) -> list[dict]:
    async with _database(database_url) as db:
        users = await UserService(db).list_users(limit=limit)
        return [
            {"id": str(u.id), "email": u.email, "name": u.name, "tier": u.tier}
            for u in users
        ]


# ---------------------------------------------------------------------------
# warden set-tier
# ---------------------------------------------------------------------------


@main.command("set-tier")
@click.argument("email")
@click.argument("tier", type=click.Choice([t.value for t in Tier]))
@click.pass_context
def set_tier(ctx: click.Context, email: str, tier: str):
    """Change a user's tier. Their sessions are revoked if it changed."""
    result = _run(_set_tier_impl(ctx.obj["database_url"], email, Tier(tier)))
    click.secho(f"{result['email']}: ", nl=False)
    click.secho(result["tier"], fg=_tier_color(result["tier"]))


async def _set_tier_impl(database_url: str, email: str, tier: Tier) -> dict:
    async with _database(database_url) as db:
        service = UserService(db)
        try:
            user = await service.get_by_email(email)
            if user is None:
                click.secho(f"Error: no user with email {email}", fg="red", err=True)
                sys.exit(1)
            user = await service.set_tier(Principal.operator(), user.id, tier)
        except WardenError as e:
            _fail(e)
        return {"email": user.email, "tier": user.tier}


# ---------------------------------------------------------------------------
# warden revoke-sessions
# ---------------------------------------------------------------------------


@main.command("revoke-sessions")
@click.argument("email")
@click.option("--reason", default="operator", show_default=True)
@click.pass_context
def revoke_sessions(ctx: click.Context, email: str, reason: str):
    """Revoke every session of a user."""
    count = _run(_revoke_sessions_impl(ctx.obj["database_url"], email, reason))
    click.secho(f"Revoked {count} session(s)", fg="green")


async def _revoke_sessions_impl(database_url: str, email: str, reason: str) -> int:
    async with _database(database_url) as db:
        user = await UserService(db).get_by_email(email)
        if user is None:
            click.secho(f"Error: no user with email {email}", fg="red", err=True)
            sys.exit(1)
        return await TokenService(db).revoke_all(user.id, reason=reason)


# ---------------------------------------------------------------------------
# warden purge-sessions
# ---------------------------------------------------------------------------


@main.command("purge-sessions")
@click.option(
    "--grace-hours",
    type=int,
    default=None,
    help="Only purge sessions dead for longer than this (default WARDEN_SESSION_PURGE_GRACE_HOURS).",
)
@click.pass_context
def purge_sessions(ctx: click.Context, grace_hours: Optional[int]):
    """Delete expired and revoked sessions past the grace period."""
    hours = grace_hours if grace_hours is not None else settings.session_purge_grace_hours
    count = _run(_purge_sessions_impl(ctx.obj["database_url"], timedelta(hours=hours)))
    click.secho(f"Purged {count} session(s)", fg="green")


async def _purge_sessions_impl(database_url: str, grace: timedelta) -> int:
    async with _database(database_url) as db:
        return await TokenService(db).purge_expired(grace)


if __name__ == "__main__":
    main()
