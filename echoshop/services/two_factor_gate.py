"""
2FA gate for logins and critical actions.

Issues challenges when the policy requires one, and checks that a protected
request carries a verified, unexpired session of the right purpose that
belongs to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from echoshop.config import get_settings, Settings
from echoshop.error_handlers import TwoFactorRequiredError
from echoshop.metrics import record_two_factor_challenge, record_protected_action
from echoshop.models import User, TwoFactorSession, TwoFactorPurpose, CriticalActionType, AuditAction
from echoshop.services.audit_service import AuditService
from echoshop.services.totp_service import TOTPService
from echoshop.services.two_factor_policy import TwoFactorPolicy
from echoshop.services.two_factor_sessions import TwoFactorSessionManager
from echoshop.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ChallengeOutcome:
    """Result of asking for a challenge"""
    required: bool
    enabled: bool = False
    session: Optional[TwoFactorSession] = None


@dataclass
class LoginDecision:
    """Whether a password-authenticated user may receive tokens now"""
    allowed: bool
    challenge: Optional[TwoFactorSession] = None
    setup_required: bool = False
    check_failed_open: bool = False


class TwoFactorGate:
    """Combines policy, session store and TOTP state into gate decisions"""

    def __init__(
        self,
        db: Session,
        policy: TwoFactorPolicy,
        totp: TOTPService,
        sessions: Optional[TwoFactorSessionManager] = None,
        audit: Optional[AuditService] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.policy = policy
        self.totp = totp
        self.sessions = sessions or totp.sessions
        self.audit = audit or totp.audit
        self.settings = settings or get_settings()

    def begin(
        self,
        user: User,
        purpose: Union[TwoFactorPurpose, str],
        action_type: Optional[Union[CriticalActionType, str]] = None,
        action_context: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> ChallengeOutcome:
        """
        Issue a challenge if the user must verify.

        Returns:
            ChallengeOutcome; session is set only when 2FA is required and enabled

        Raises:
            TwoFactorSessionError: If the challenge could not be stored
        """
        purpose = TwoFactorPurpose(purpose)

        if not self.policy.is_required(user.role, purpose, action_type):
            return ChallengeOutcome(required=False)

        if not self.totp.is_enabled(user.id):
            return ChallengeOutcome(required=True, enabled=False)

        session = self.sessions.create(user.id, purpose, action_type, action_context)

        self.audit.log_verification(
            session,
            AuditAction.TWO_FACTOR_CHALLENGE_ISSUED,
            ip_address=ip_address,
        )
        record_two_factor_challenge(purpose.value)

        return ChallengeOutcome(required=True, enabled=True, session=session)

    def check_action(
        self,
        user: User,
        action_type: Union[CriticalActionType, str],
        session_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[TwoFactorSession]:
        """
        Allow a critical action only with a verified critical_action session.

        Any failure to establish that, including a backend error, denies.

        Returns:
            The verified session, or None when the policy does not require 2FA

        Raises:
            TwoFactorRequiredError: When the request must be refused
        """
        action_type = CriticalActionType(action_type)

        try:
            session = self._check_action(user, action_type, session_token, now or utcnow())
        except TwoFactorRequiredError:
            record_protected_action(action_type.value, allowed=False)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"2FA check failed for user {user.id} action {action_type.value}: {e}")
            record_protected_action(action_type.value, allowed=False)
            raise TwoFactorRequiredError("Failed to verify 2FA status.") from e

        record_protected_action(action_type.value, allowed=True)
        return session

    def _check_action(
        self,
        user: User,
        action_type: CriticalActionType,
        session_token: Optional[str],
        now: datetime,
    ) -> Optional[TwoFactorSession]:
        if not self.policy.is_required(user.role, TwoFactorPurpose.CRITICAL_ACTION, action_type):
            return None

        if not self.totp.is_enabled(user.id):
            raise TwoFactorRequiredError(
                "2FA must be enabled for this action. Please set up 2FA in your security settings."
            )

        if not session_token:
            raise TwoFactorRequiredError("2FA verification required for this action.")

        session = self.sessions.get_by_token(session_token)
        if (
            session is None
            or session.user_id != user.id
            or session.purpose != TwoFactorPurpose.CRITICAL_ACTION.value
            or session.action_type != action_type.value
            or not session.verified
        ):
            raise TwoFactorRequiredError("Invalid or unverified 2FA session.")

        if session.is_expired(now):
            raise TwoFactorRequiredError("2FA session expired. Please verify again.")

        return session

    def check_login(
        self,
        user: User,
        session_token: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LoginDecision:
        """
        Decide whether a password-authenticated user may be issued tokens.

        A presented token must be a verified, unexpired login session of the
        same user. Without one, a challenge is issued when the policy requires it.

        Raises:
            TwoFactorRequiredError: Presented token is not acceptable
            TwoFactorSessionError: Challenge could not be stored
        """
        now = now or utcnow()

        if session_token:
            session = self.sessions.get_by_token(session_token)
            if (
                session is None
                or session.user_id != user.id
                or session.purpose != TwoFactorPurpose.LOGIN.value
                or not session.verified
                or session.is_expired(now)
            ):
                raise TwoFactorRequiredError("Invalid or unverified 2FA session.")
            return LoginDecision(allowed=True)

        if not self.policy.is_required(user.role, TwoFactorPurpose.LOGIN):
            return LoginDecision(allowed=True)

        try:
            enabled = self.totp.is_enabled(user.id)
        except SQLAlchemyError as e:
            self.db.rollback()
            if not self.settings.two_factor_login_fail_open:
                raise
            logger.warning(f"2FA status check failed for login of user {user.id}, allowing login: {e}")
            self._audit_failed_open(user, ip_address, str(e))
            return LoginDecision(allowed=True, check_failed_open=True)

        if not enabled:
            return LoginDecision(allowed=True, setup_required=True)

        outcome = self.begin(user, TwoFactorPurpose.LOGIN, ip_address=ip_address)
        return LoginDecision(allowed=False, challenge=outcome.session)

    def _audit_failed_open(self, user: User, ip_address: Optional[str], reason: str):
        try:
            self.audit.log(
                action=AuditAction.LOGIN_2FA_CHECK_FAILED_OPEN,
                user=user,
                ip_address=ip_address,
                description="2FA status check failed during login; login allowed",
                details={"reason": reason},
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not record fail-open audit event for user {user.id}: {e}")
