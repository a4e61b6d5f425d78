"""
2FA challenge session manager.

A session moves from CREATED to VERIFIED on exactly one successful code
check before it expires, or becomes EXPIRED by time. Both are terminal.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Union
from uuid import UUID

from sqlalchemy import update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from echoshop.config import get_settings
from echoshop.error_handlers import APIError
from echoshop.models import TwoFactorSession, TwoFactorPurpose, CriticalActionType
from echoshop.utils.clock import utcnow

logger = logging.getLogger(__name__)


class TwoFactorSessionError(APIError):
    """Raised when a challenge session cannot be stored"""

    def __init__(self, message: str = "Failed to create 2FA session."):
        super().__init__(message=message, status_code=500, error_code="2FA_SESSION_ERROR")


class TwoFactorSessionManager:
    """Creates, looks up, verifies and purges challenge sessions"""

    def __init__(self, db: Session, lifetime_minutes: Optional[int] = None):
        self.db = db
        if lifetime_minutes is None:
            lifetime_minutes = get_settings().two_factor_session_minutes
        self.lifetime = timedelta(minutes=lifetime_minutes)

    def create(
        self,
        user_id: UUID,
        purpose: Union[TwoFactorPurpose, str],
        action_type: Optional[Union[CriticalActionType, str]] = None,
        action_context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TwoFactorSession:
        """
        Issue a new unverified challenge.

        Raises:
            TwoFactorSessionError: If the row could not be stored
        """
        created_at = now or utcnow()
        session = TwoFactorSession(
            user_id=user_id,
            session_token=secrets.token_urlsafe(32),
            purpose=TwoFactorPurpose(purpose).value,
            action_type=CriticalActionType(action_type).value if action_type else None,
            action_context=action_context,
            verified=False,
            created_at=created_at,
            expires_at=created_at + self.lifetime,
        )

        try:
            self.db.add(session)
            self.db.commit()
            self.db.refresh(session)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create 2FA session for user {user_id}: {e}")
            raise TwoFactorSessionError() from e

        logger.info(f"2FA session created: user={user_id} purpose={session.purpose} action={session.action_type}")

        return session

    def get_by_token(self, token: str) -> Optional[TwoFactorSession]:
        """Look up a session by its token"""
        if not token:
            return None
        return self.db.query(TwoFactorSession).filter(
            TwoFactorSession.session_token == token
        ).first()

    def mark_verified(self, token: str, now: Optional[datetime] = None) -> bool:
        """
        Flip an unverified, unexpired session to verified.

        A single conditional UPDATE, so concurrent callers cannot both win.

        Returns:
            True if this call verified the session
        """
        now = now or utcnow()
        result = self.db.execute(
            update(TwoFactorSession)
            .where(
                TwoFactorSession.session_token == token,
                TwoFactorSession.verified.is_(False),
                TwoFactorSession.expires_at > now,
            )
            .values(verified=True)
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()

        return result.rowcount == 1

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete sessions whose expiry has passed.

        Returns:
            Number of rows removed
        """
        now = now or utcnow()
        result = self.db.execute(
            delete(TwoFactorSession)
            .where(TwoFactorSession.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired 2FA sessions")

        return result.rowcount
