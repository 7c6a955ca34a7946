from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from salesdesk.core.config import settings
from salesdesk.core.logging import get_logger
from salesdesk.services.chat.errors import StorageError
from salesdesk.services.contracts import SessionDirectory
from salesdesk.utils.time import utcnow

logger = get_logger(__name__)


class MessageRetention:
    """Deletes chat messages older than the retention window.

    Sessions are kept; only their message log is trimmed. Counters on the
    session are historical and are not recomputed.
    """

    def __init__(
        self,
        sessions: SessionDirectory,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.retention_days = retention_days if retention_days is not None else settings.CHAT_MESSAGE_RETENTION_DAYS
        self.clock = clock

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) - timedelta(days=self.retention_days)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = self.cutoff(now)
        deleted = await self.sessions.purge_messages_before(cutoff)
        if deleted:
            logger.info(f"Purged {deleted} chat messages older than {cutoff.isoformat()}")
        return deleted


async def run_retention_loop(interval_seconds: Optional[float] = None) -> None:
    """Background sweeper started by the application lifespan."""
    # Imported here so tests can use the engine without a database driver
    from salesdesk.db.session import AsyncSessionLocal
    from salesdesk.services.chat.directory import SqlSessionDirectory

    interval = interval_seconds if interval_seconds is not None else settings.CHAT_RETENTION_SWEEP_SECONDS
    logger.info(
        f"Chat retention sweeper started (every {interval}s, keep {settings.CHAT_MESSAGE_RETENTION_DAYS} days)"
    )
    while True:
        try:
            async with AsyncSessionLocal() as db:
                await MessageRetention(SqlSessionDirectory(db)).purge_expired()
        except StorageError as exc:
            logger.error(f"Chat retention sweep failed: {exc}")
        except Exception as exc:
            logger.exception(f"Unexpected error in chat retention sweep: {exc}")
        await asyncio.sleep(interval)
