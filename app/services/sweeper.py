"""
Overdue sweeper - forces DELAYED on tickets whose effective due date has passed.

This is the only source of the DELAYED status. It runs headless on an APScheduler
interval and goes through the same engine entry point as people do, so every
breach lands in the audit journal like any other transition.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.domain import Ticket
from app.models.enums import TransitionEvent
from app.services.business_calendar import to_day, utc_now
from app.services.directory import SYSTEM_ACTOR
from app.services.errors import LifecycleError, StoreUnavailable
from app.services.lifecycle import TicketLifecycleEngine, allowed_sources
from app.services.locks import TicketLockRegistry, ticket_locks

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "overdue_sweep"


class OverdueSweeper:
    """Scans open tickets and marks overdue ones as DELAYED."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        locks: Optional[TicketLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        interval_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks or ticket_locks
        self.clock = clock or utc_now
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        self.scheduler: Optional[BackgroundScheduler] = None

    def find_overdue_ticket_ids(self, db: Session, now: datetime) -> List[str]:
        """Tickets that accept MARK_DELAYED and whose due day ended before `now`."""
        rows = (
            db.query(Ticket.id)
            .filter(
                Ticket.status.in_(list(allowed_sources(TransitionEvent.MARK_DELAYED))),
                Ticket.due_date < to_day(now),
            )
            .order_by(Ticket.due_date.asc(), Ticket.id.asc())
            .all()
        )
        return [row[0] for row in rows]

    def run_overdue_sweep(self, now: Optional[datetime] = None) -> int:
        """
        Run one sweep and return how many tickets moved to DELAYED.

        A failure on one ticket is logged and the sweep carries on with the rest.
        """
        now = now or self.clock()
        db = self.session_factory()
        transitioned = 0
        try:
            engine = TicketLifecycleEngine(db, locks=self.locks, clock=lambda: now)
            try:
                candidates = self.find_overdue_ticket_ids(db, now)
            except SQLAlchemyError as exc:
                raise StoreUnavailable("Overdue scan failed; no ticket was touched") from exc
            for ticket_id in candidates:
                try:
                    engine.submit_transition(ticket_id, TransitionEvent.MARK_DELAYED, SYSTEM_ACTOR, at=now)
                    transitioned += 1
                except LifecycleError as exc:
                    # Resolved since the scan, busy, or a store failure the engine already rolled back
                    logger.warning("Sweep skipped ticket %s: %s", ticket_id, exc.message)
        finally:
            db.close()

        if transitioned:
            logger.info("Overdue sweep marked %d of %d candidate ticket(s) as delayed", transitioned, len(candidates))
        return transitioned

    def _scheduled_run(self) -> None:
        try:
            self.run_overdue_sweep()
        except Exception:
            # Keep the scheduler alive; the next interval retries
            logger.exception("Overdue sweep failed")

    def start(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            logger.warning("Overdue sweeper already running")
            return

        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            self._scheduled_run,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name="Mark overdue tickets as delayed",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Overdue sweeper started (every %s seconds)", self.interval_seconds)

    def stop(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Overdue sweeper stopped")
        self.scheduler = None

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running
