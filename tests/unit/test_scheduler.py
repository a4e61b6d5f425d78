"""Unit tests for the security housekeeping scheduler (scheduler.py)"""
import pytest
from datetime import timedelta
from unittest.mock import patch, MagicMock

from echoshop.models import AuditLog, AuditAction, TwoFactorSession
from echoshop.services.scheduler import SecurityScheduler, purge_expired_sessions
from echoshop.services.two_factor_sessions import TwoFactorSessionManager
from echoshop.utils.clock import utcnow


@pytest.mark.integration
class TestPurgeJob:
    """Test the purge job body"""

    def test_purges_and_audits(self, db_session, shopper_user):
        manager = TwoFactorSessionManager(db_session, lifetime_minutes=10)
        manager.create(shopper_user.id, "login", now=utcnow() - timedelta(hours=1))
        manager.create(shopper_user.id, "login", now=utcnow() - timedelta(hours=2))
        manager.create(shopper_user.id, "login")

        removed = purge_expired_sessions(db_session)

        assert removed == 2
        assert db_session.query(TwoFactorSession).count() == 1
        entry = db_session.query(AuditLog).filter(
            AuditLog.action == AuditAction.TWO_FACTOR_SESSIONS_PURGED.value
        ).one()
        assert entry.details == {"removed": 2}

    def test_nothing_to_purge_writes_no_audit(self, db_session):
        assert purge_expired_sessions(db_session) == 0
        assert db_session.query(AuditLog).filter(
            AuditLog.action == AuditAction.TWO_FACTOR_SESSIONS_PURGED.value
        ).count() == 0


@pytest.mark.unit
class TestSecurityScheduler:
    """Test job registration and lifecycle"""

    @pytest.fixture
    def scheduler(self):
        with patch("echoshop.services.scheduler.BackgroundScheduler") as mock_cls:
            instance = SecurityScheduler()
            instance.scheduler = mock_cls.return_value
            yield instance

    def test_start_registers_purge_job(self, scheduler):
        scheduler.start()

        kwargs = scheduler.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "purge_2fa_sessions"
        assert kwargs["trigger"].interval == timedelta(minutes=15)
        assert scheduler.scheduler.start.called

    def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        scheduler.start()

        assert scheduler.scheduler.start.call_count == 1

    def test_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()

        assert scheduler.scheduler.shutdown.called

    def test_job_errors_are_contained(self, scheduler):
        db = MagicMock()
        with patch("echoshop.database.SessionLocal", return_value=db), \
                patch("echoshop.services.scheduler.purge_expired_sessions", side_effect=RuntimeError("db gone")):
            scheduler._purge_sessions_job()

        assert db.rollback.called
        assert db.close.called

    def test_custom_interval(self):
        with patch("echoshop.services.scheduler.BackgroundScheduler"):
            instance = SecurityScheduler(purge_interval_minutes=5)
            instance.start()

        kwargs = instance.scheduler.add_job.call_args.kwargs
        assert kwargs["trigger"].interval == timedelta(minutes=5)
        assert instance.running is True
