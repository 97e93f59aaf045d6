"""
Expiry reaper for accessibility reports
Periodically deletes expired and long-removed reports

Usage:
    reaper = ExpiryReaper(db)
    scheduler = ReaperScheduler(reaper)

    # In FastAPI startup:
    scheduler.start()

    # In FastAPI shutdown:
    scheduler.stop()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from accessmap.core.constants import REAPER_INTERVAL_MINUTES, REMOVED_RETENTION_DAYS
from accessmap.core.exceptions import StorageUnavailable
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import Report, ReportStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Number of reports deleted by one sweep."""
    expired_deleted: int = 0
    removed_deleted: int = 0

    @property
    def total(self) -> int:
        return self.expired_deleted + self.removed_deleted

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "expired_deleted": self.expired_deleted,
            "removed_deleted": self.removed_deleted,
        }


class ExpiryReaper:
    """
    Deletes reports that are no longer worth keeping.

    - Non-permanent, non-removed reports whose expiry has passed
    - Removed reports untouched for longer than the retention period

    Photos, confirmations and removal reports go with their report.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        retention_days: int = REMOVED_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize reaper.

        Args:
            db: Report store
            retention_days: Days a removed report is kept after its last update
            clock: Source of "now" (naive UTC)
        """
        self.db = db
        self.retention = timedelta(days=retention_days)
        self.clock = clock
        self._sweeping = threading.Lock()

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one cleanup pass.

        A sweep that starts while another is in progress returns
        immediately with nothing deleted.

        Args:
            now: Reference time (defaults to the clock)

        Returns:
            SweepResult with the number of deleted reports

        Raises:
            StorageUnavailable: the store could not be reached
        """
        if not self._sweeping.acquire(blocking=False):
            logger.debug("Sweep already in progress, skipping")
            return SweepResult()

        try:
            now = now or self.clock()
            result = SweepResult()

            with self.db.get_session() as session:
                result.expired_deleted = (
                    session.query(Report)
                    .filter(
                        Report.is_permanent.is_(False),
                        Report.status != ReportStatus.REMOVED,
                        Report.expires_at.isnot(None),
                        Report.expires_at < now,
                    )
                    .delete(synchronize_session=False)
                )

                result.removed_deleted = (
                    session.query(Report)
                    .filter(
                        Report.status == ReportStatus.REMOVED,
                        Report.updated_at < now - self.retention,
                    )
                    .delete(synchronize_session=False)
                )

            if result.total:
                logger.info(
                    f"Sweep deleted {result.expired_deleted} expired and "
                    f"{result.removed_deleted} removed reports"
                )
            return result

        except SQLAlchemyError as e:
            raise StorageUnavailable("Report store is unavailable") from e
        finally:
            self._sweeping.release()

    def run_safely(self) -> Optional[SweepResult]:
        """
        Sweep, logging failures instead of raising them.

        Returns:
            SweepResult, or None if the sweep failed (the next tick retries)
        """
        try:
            return self.sweep()
        except Exception as e:
            logger.error(f"Report sweep failed: {e}")
            return None


class ReaperScheduler:
    """
    Runs the reaper on a fixed interval inside the API's event loop.

    The first sweep runs as soon as the scheduler starts.
    """

    JOB_ID = "report_sweep"

    def __init__(self, reaper: ExpiryReaper, interval_minutes: int = REAPER_INTERVAL_MINUTES):
        self.reaper = reaper
        self.interval_minutes = interval_minutes
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scheduler. Must be called from a running event loop."""
        if self._running:
            logger.warning("[Reaper] Already running")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id=self.JOB_ID,
            name="Expired Report Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self.scheduler.start()
        self._running = True

        logger.info(f"[Reaper] Report sweep scheduled every {self.interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("[Reaper] Scheduler stopped")

    async def _run_sweep(self):
        """Run one sweep off the event loop."""
        await asyncio.to_thread(self.reaper.run_safely)
