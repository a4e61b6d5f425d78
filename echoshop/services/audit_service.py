"""
Audit trail for security events.

Every login, 2FA lifecycle step, challenge outcome and critical action
becomes one append-only AuditLog row. Writes commit immediately so a
later failure in the request cannot erase the record of what happened.
"""

import logging
from typing import List, Dict, Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from echoshop.models import User, AuditLog, AuditAction, get_category_for_action, TwoFactorSession
from echoshop.utils.clock import utcnow

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 500


def _humanize(action: AuditAction) -> str:
    return action.value.replace("_", " ")


class AuditService:
    """Writes and reads audit log rows"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: AuditAction,
        user: Optional[User] = None,
        user_id: Optional[UUID] = None,
        email: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Dict] = None,
    ) -> AuditLog:
        """
        Record one security event.

        The actor comes from `user` when given, otherwise from `user_id` and
        `email` (failed logins have only the submitted email). The category
        is derived from the action.
        """
        if user is not None:
            user_id, email = user.id, user.email

        entry = AuditLog(
            action=action.value,
            category=get_category_for_action(action).value,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:USER_AGENT_MAX_LENGTH] or None,
            target_type=target_type,
            target_id=None if target_id is None else str(target_id),
            description=description,
            details=details,
        )
        self.db.add(entry)
        self.db.commit()

        logger.debug(f"Audit: {action.value} actor={email or user_id} target={target_type}:{target_id}")
        return entry

    def log_login(
        self,
        user: User,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> AuditLog:
        if success:
            action, description = AuditAction.LOGIN, "Successful login"
        else:
            action, description = AuditAction.LOGIN_FAILED, f"Failed login: {failure_reason or 'Invalid credentials'}"
        return self.log(action, user=user, ip_address=ip_address, user_agent=user_agent, description=description)

    def log_verification(
        self,
        session: TwoFactorSession,
        action: AuditAction,
        ip_address: Optional[str] = None,
        **extra: Any,
    ) -> AuditLog:
        """Log a challenge outcome against the session it concerns

        Extra keyword arguments (attempt counts, lockout expiry, ...) land in
        ``details`` next to the session's purpose and action type.
        """
        details = dict(
            timestamp=utcnow().isoformat(),
            purpose=session.purpose,
            action_type=session.action_type,
            **extra,
        )
        return self.log(
            action,
            user_id=session.user_id,
            ip_address=ip_address,
            target_type="2fa_session",
            target_id=str(session.id),
            description=f"{_humanize(action)} ({session.purpose})",
            details=details,
        )

    def log_guarded_action(
        self,
        action: AuditAction,
        actor: User,
        target_type: str,
        target_id: str,
        changes: Optional[Dict] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """Log a critical action performed after 2FA verification"""
        return self.log(
            action,
            user=actor,
            ip_address=ip_address,
            target_type=target_type,
            target_id=target_id,
            description=f"{_humanize(action).title()}: {target_type} {target_id}",
            details=changes,
        )

    def get_logs(
        self,
        action: Optional[str] = None,
        user_id: Optional[UUID] = None,
        target_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLog]:
        """Audit rows matching every given filter, newest first"""
        filters = (
            (AuditLog.action, action),
            (AuditLog.user_id, user_id),
            (AuditLog.target_type, target_type),
        )
        query = self.db.query(AuditLog)
        for column, wanted in filters:
            if wanted is not None:
                query = query.filter(column == wanted)

        return query.order_by(AuditLog.created_at.desc(), AuditLog.id).offset(offset).limit(limit).all()
