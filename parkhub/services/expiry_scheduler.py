# parkhub/services/expiry_scheduler.py
"""
Reservation expiry sweep.

Every SWEEP_INTERVAL_SECONDS the scheduler lists the reservations whose
deadline has passed and releases each one through
SpaceLifecycleService.cancel_reservation(reason="expired").

Each space is handled in its own transaction: one failure is logged and the
rest of the batch still runs. A space freed by an operator in the meantime
is skipped silently.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from parkhub.database import Database
from parkhub.exceptions import NotReserved, SpaceError, SpaceNotFound
from parkhub.models.enums import ChangedBy, REASON_EXPIRED
from parkhub.services.change_feed import SpaceChangeFeed
from parkhub.services.lifecycle_service import SpaceLifecycleService
from parkhub.services.notification_emitter import NotificationEmitter
from parkhub.services.space_store import SpaceStore
from parkhub.utils.logger import get_logger
from parkhub.utils.timeutil import utcnow

logger = get_logger(__name__)


@dataclass
class SweepReport:
    started_at: datetime
    expired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class ReservationExpiryScheduler:
    def __init__(self, database: Database, emitter: Optional[NotificationEmitter] = None,
                 change_feed: Optional[SpaceChangeFeed] = None,
                 interval_seconds: int = 60, batch_size: int = 500,
                 clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.emitter = emitter
        self.change_feed = change_feed
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.clock = clock
        self.last_report: Optional[SweepReport] = None
        self._task: Optional[asyncio.Task] = None

    def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """One pass over every reservation expired at `now`, listed in pages of batch_size. Blocking."""
        now = now or self.clock()
        report = SweepReport(started_at=now)
        seen: list[str] = []

        # Fresh DB session per sweep
        db = self.database.session()
        try:
            store = SpaceStore(db)
            service = SpaceLifecycleService(store, self.emitter, self.change_feed, clock=self.clock)

            # Page through the listing; spaces already handled are excluded so
            # failed ones are not listed again
            while True:
                batch = [s.number for s in store.list_expired_reservations(
                    now, limit=self.batch_size, exclude=seen)]
                if not batch:
                    break
                logger.info(f"[SWEEP] {len(batch)} expired reservation(s): {batch}")
                seen.extend(batch)
                for number in batch:
                    self._expire_one(service, number, now, report)
                if len(batch) < self.batch_size:
                    break
        finally:
            db.close()

        self.last_report = report
        if seen:
            logger.info(f"[SWEEP] done: {len(report.expired)} expired, "
                        f"{len(report.skipped)} skipped, {len(report.failed)} failed")
        return report

    def _expire_one(self, service: SpaceLifecycleService, number: str, now: datetime,
                    report: SweepReport):
        try:
            service.cancel_reservation(
                number, reason=REASON_EXPIRED, changed_by=ChangedBy.SYSTEM, expired_before=now,
            )
            report.expired.append(number)
        except (NotReserved, SpaceNotFound) as e:
            # Cancelled, occupied or re-reserved since the listing
            logger.debug(f"[SWEEP] {number} skipped: {e}")
            report.skipped.append(number)
        except SpaceError as e:
            logger.error(f"[SWEEP] {number} failed: {e}")
            report.failed.append(number)
        except Exception as e:
            logger.error(f"[SWEEP] {number} failed unexpectedly: {e}", exc_info=True)
            report.failed.append(number)
            # A failed flush can leave the shared session unusable for the next space
            service.store.db.rollback()

    async def run_forever(self):
        """Sweep loop started at backend startup. Runs until cancelled."""
        logger.info(f"⏱  Reservation expiry sweep every {self.interval_seconds}s")
        while True:
            try:
                await asyncio.to_thread(self.run_sweep)
            except Exception as e:
                logger.error(f"[SWEEP] Sweep run crashed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="reservation-expiry-sweep")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("⏱  Reservation expiry sweep stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
