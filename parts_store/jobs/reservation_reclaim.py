"""
Reservation Reclaim Scheduler

Background loop that sweeps expired stock reservations every
RESERVATION_SWEEP_INTERVAL_MINUTES, plus run_once() for on-demand triggers
(cleanup endpoint, startup hooks, cron).

Each pass:
1. ReservationManager.sweep_expired() deletes leases with expires_at < now
2. Cart lines whose recorded lease has lapsed are removed

Overlapping passes are safe: deletes are conditional, so a lease is only
reported by the pass that removed it. A failed pass is logged, counted in
the heartbeat and retried on the next tick.

Usage:
    await reclaim_scheduler.start()
    result = await reclaim_scheduler.run_once()
    await reclaim_scheduler.stop()
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.core.config import settings
from parts_store.core.database import get_db_session
from parts_store.core.utils import utcnow
from parts_store.models import CartItem
from parts_store.services.reservations import ReservationManager, SweepResult

logger = logging.getLogger(__name__)


async def prune_lapsed_cart_lines(db: AsyncSession, now: datetime) -> int:
    """Delete cart lines admitted with a lease that has since lapsed."""
    result = await db.execute(
        delete(CartItem.__table__).where(
            CartItem.__table__.c.reservation_expires_at.is_not(None),
            CartItem.__table__.c.reservation_expires_at < now,
        )
    )
    return result.rowcount or 0


async def reclaim_expired_reservations(
    db: AsyncSession,
    clock: Callable[[], datetime] = utcnow,
) -> SweepResult:
    """One sweep pass on `db`. The caller commits."""
    manager = ReservationManager(db, clock=clock)
    result = await manager.sweep_expired()

    pruned = await prune_lapsed_cart_lines(db, clock())
    if pruned:
        logger.info(f"Removed {pruned} cart lines with lapsed reservations")

    return result


class ReclaimScheduler:
    """
    Periodic sweep of expired reservations.

    Call start() to begin background scheduling.
    """

    def __init__(
        self,
        interval_minutes: float = settings.RESERVATION_SWEEP_INTERVAL_MINUTES,
        session_factory: Callable = get_db_session,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.interval_minutes = interval_minutes
        self._session_factory = session_factory
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.heartbeat: Dict[str, Any] = {
            "last_run": None,
            "last_success": None,
            "records_processed": 0,
            "errors": 0,
        }

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SweepResult:
        """
        Run one sweep in its own session and update the heartbeat.

        Raises:
            TransientStorageError: storage unavailable (also counted in heartbeat)
        """
        self.heartbeat["last_run"] = utcnow().isoformat()

        try:
            async with self._session_factory() as db:
                result = await reclaim_expired_reservations(db, clock=self._clock)
        except Exception as e:
            self.heartbeat["errors"] += 1
            logger.error(f"Reservation sweep failed: {type(e).__name__}: {e}")
            raise

        self.heartbeat["last_success"] = utcnow().isoformat()
        self.heartbeat["records_processed"] += result.released_count
        return result

    async def _run_loop(self) -> None:
        """Sweep every interval until cancelled."""
        interval_seconds = self.interval_minutes * 60
        logger.info(f"Reservation reclaim scheduler started (interval: {self.interval_minutes} minutes)")

        while True:
            try:
                await self.run_once()
            except Exception as e:
                # Already counted; next tick retries
                logger.debug(f"Reservation sweep will retry in {self.interval_minutes} minutes: {e}")

            await asyncio.sleep(interval_seconds)

    async def start(self) -> None:
        if self.running:
            logger.info("Reservation reclaim scheduler already running")
            return
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("Reservation reclaim scheduler cancelled")
        self._task = None


# Global scheduler instance
reclaim_scheduler = ReclaimScheduler()


def get_reclaim_scheduler() -> ReclaimScheduler:
    """FastAPI dependency returning the shared scheduler."""
    return reclaim_scheduler


# For running from cron
if __name__ == "__main__":
    async def main():
        print("Running reservation sweep...")
        result = await reclaim_scheduler.run_once()
        print(f"Sweep complete: {result.to_dict()}")

    asyncio.run(main())
