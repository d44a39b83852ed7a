"""
Background expiry sweep.

Rewrites PENDING requests past their window to EXPIRED and releases
documents of terminal requests. Reads never depend on it having run.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from gatepass.application.documents import DocumentReleaser
from gatepass.core.logging import get_logger
from gatepass.domain.models import utc_now
from gatepass.infrastructure.db.repository import VisitRequestRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    """Counts from one sweep pass."""

    expired: int
    released: int


class ExpirySweeper:
    """
    Idempotent expiry sweep over the visit request store.

    Example:
        sweeper = ExpirySweeper(visits, releaser)
        report = await sweeper.sweep_once()
    """

    def __init__(
        self,
        visits: VisitRequestRepository,
        document_releaser: DocumentReleaser,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._visits = visits
        self._releaser = document_releaser
        self._batch_size = batch_size
        self._clock = clock

    async def sweep_once(self) -> SweepReport:
        """
        Run a single pass.

        Only still-PENDING records are expired; a request decided
        between the listing and the update is left alone by the
        conditional write.

        Returns:
            SweepReport: How many requests were expired and released.
        """
        now = self._clock()

        expired = 0
        for visit in await self._visits.list_expired_pending(now, limit=self._batch_size):
            if await self._visits.mark_expired(visit.id, visit.version, now):
                expired += 1

        # Page past rows whose release keeps failing
        released = 0
        after = None
        while True:
            batch = await self._visits.list_awaiting_release(limit=self._batch_size, after=after)
            for visit in batch:
                if await self._releaser.release(visit, now):
                    released += 1
            if len(batch) < self._batch_size:
                break
            last = batch[-1]
            after = (last.created_at, last.id)

        if expired or released:
            logger.info("expiry_sweep_complete", expired=expired, released=released)
        return SweepReport(expired=expired, released=released)

    async def run(self, interval_seconds: float) -> None:
        """
        Sweep forever at a fixed interval until cancelled.

        Args:
            interval_seconds: Delay between passes.
        """
        logger.info("expiry_sweep_started", interval_seconds=interval_seconds)
        while True:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("expiry_sweep_failed", error=str(e))
            await asyncio.sleep(interval_seconds)
