"""Periodic recovery of jobs whose worker vanished."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from build_broker.orchestrator.errors import StoreUnavailable
from build_broker.orchestrator.repository import OrchestratorRepository

logger = logging.getLogger(__name__)


class StuckJobReaper:
    """Returns running jobs with an expired claim to pending."""

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        stuck_timeout_seconds: int = 600,
        interval_seconds: float = 300.0,
    ) -> None:
        self.repository = repository
        self.stuck_timeout_seconds = stuck_timeout_seconds
        self.interval_seconds = interval_seconds

    def reap_now(self, *, now: datetime | None = None) -> list[str]:
        job_ids = self.repository.requeue_stuck_jobs(
            stale_after=timedelta(seconds=self.stuck_timeout_seconds),
            now=now,
        )
        if job_ids:
            logger.warning("Requeued %d stuck job(s): %s", len(job_ids), ", ".join(job_ids))
        else:
            logger.debug("No stuck jobs found")
        return job_ids

    async def sweep(self) -> int:
        return len(await asyncio.to_thread(self.reap_now))

    async def run_periodic(self) -> None:
        """Sweep every interval until cancelled."""

        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except StoreUnavailable:
                logger.exception("Reaper sweep skipped")
