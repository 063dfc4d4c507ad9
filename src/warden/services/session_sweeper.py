"""Session sweeper — deletes long-dead sessions in the background.

Learn: Expired and revoked sessions are already useless (validate()
checks expires_at and revoked_at on every call), so this is storage
hygiene, not security. A session is only purged once it has been dead
for WARDEN_SESSION_PURGE_GRACE_HOURS, which keeps recent revocations
around for auditing and for the "why was I logged out" question.

Runs as a long-lived task in the FastAPI lifespan. Each sweep gets its
own DB session. `warden purge-sessions` does the same thing on demand.
"""

import asyncio
from datetime import timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from warden.config import settings
from warden.db.engine import async_session_factory
from warden.services.token_service import TokenService

logger = structlog.get_logger()


class SessionSweeper:
    """Background worker that purges dead auth_sessions rows.

    Usage:
        sweeper = SessionSweeper()
        asyncio.create_task(sweeper.run_loop())
    """

    def __init__(
        self,
        interval: Optional[float] = None,
        grace: Optional[timedelta] = None,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
    ):
        self.interval = interval if interval is not None else settings.session_sweep_interval_seconds
        self.grace = grace if grace is not None else timedelta(hours=settings.session_purge_grace_hours)
        self.session_factory = session_factory
        self._running = False

    async def run_loop(self) -> None:
        """Main worker loop — sweep, then sleep."""
        self._running = True
        logger.info("session_sweeper.started", interval=self.interval)

        while self._running:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("session_sweeper.error")
            await asyncio.sleep(self.interval)

    async def sweep_once(self) -> int:
        async with self.session_factory() as db:
            return await TokenService(db).purge_expired(self.grace)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("session_sweeper.stopping")
