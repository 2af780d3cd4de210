from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

from coachsync.config import Settings, get_settings
from coachsync.db import AsyncSessionLocal
from coachsync.services.integration_service import IntegrationService

logger = logging.getLogger(__name__)


class StaleSyncReaper:
    """Background loop failing sync logs stuck in progress past a threshold."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[Callable] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory or AsyncSessionLocal
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the reaper loop as a background task."""
        if self.running:
            logger.warning("Stale sync reaper is already running")
            return

        self.running = True
        logger.info("Starting stale sync reaper")
        self._task = asyncio.create_task(self._run(), name="stale_sync_reaper")

    async def stop(self) -> None:
        self.running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Stopped stale sync reaper")

    async def _run(self) -> None:
        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in stale sync sweep: {e}")
            await asyncio.sleep(self.settings.sync_reaper_interval_seconds)

    async def run_once(self) -> int:
        """Run a single sweep. Returns the number of logs failed."""
        older_than = dt.timedelta(seconds=self.settings.sync_stale_after_seconds)
        async with self.session_factory() as session:
            service = IntegrationService(session, settings=self.settings)
            return await service.fail_abandoned_syncs(older_than)


# Global instance
stale_sync_reaper = StaleSyncReaper()
