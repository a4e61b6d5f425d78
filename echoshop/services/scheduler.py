"""
Periodic security housekeeping.

Expired 2FA challenge sessions are refused on lookup regardless of this
job; the sweep only keeps the table from growing without bound.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from echoshop.config import get_settings
from echoshop.database import session_scope
from echoshop.metrics import record_sessions_purged
from echoshop.models import AuditAction
from echoshop.services.audit_service import AuditService
from echoshop.services.two_factor_sessions import TwoFactorSessionManager

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "purge_2fa_sessions"


def purge_expired_sessions(db: Session) -> int:
    """Delete expired 2FA sessions; audited only when something was removed"""
    removed = TwoFactorSessionManager(db).purge_expired()
    record_sessions_purged(removed)

    if removed:
        AuditService(db).log(
            action=AuditAction.TWO_FACTOR_SESSIONS_PURGED,
            description=f"Purged {removed} expired 2FA sessions",
            details={"removed": removed},
        )

    return removed


class SecurityScheduler:
    """Owns the BackgroundScheduler running the session sweep"""

    def __init__(self, purge_interval_minutes: Optional[int] = None):
        self.scheduler = BackgroundScheduler()
        if purge_interval_minutes is None:
            purge_interval_minutes = get_settings().two_factor_session_purge_interval_minutes
        self.purge_interval_minutes = purge_interval_minutes
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self):
        if self._started:
            logger.warning("Security scheduler already running")
            return

        self.scheduler.add_job(
            func=self._purge_sessions_job,
            trigger=IntervalTrigger(minutes=self.purge_interval_minutes),
            id=PURGE_JOB_ID,
            name="Delete expired 2FA sessions",
            replace_existing=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info(f"Security scheduler started: session purge every {self.purge_interval_minutes} minutes")

    def stop(self):
        if self._started:
            self.scheduler.shutdown()
            self._started = False
            logger.info("Security scheduler stopped")

    def _purge_sessions_job(self):
        # A failed sweep must not kill the scheduler thread; the next run retries
        try:
            with session_scope() as db:
                removed = purge_expired_sessions(db)
        except Exception as e:
            logger.error(f"Scheduled 2FA session purge failed: {e}", exc_info=True)
            return
        logger.debug(f"Scheduled 2FA session purge removed {removed} rows")


_scheduler: Optional[SecurityScheduler] = None


def start_scheduler():
    global _scheduler
    if _scheduler is None:
        _scheduler = SecurityScheduler()
    _scheduler.start()


def stop_scheduler():
    if _scheduler is not None:
        _scheduler.stop()
