"""
Audit logging models for tracking security-relevant actions.

Implements an append-only trail for:
- Authentication events (login, 2FA challenges and verifications)
- Account management (deletion, role changes)
- Marketplace actions guarded by 2FA (product deletion)
- System maintenance (expired challenge purges)
"""

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid
import enum
from echoshop.database import Base
from echoshop.utils.clock import utcnow


class AuditAction(str, enum.Enum):
    """Types of auditable actions"""
    # Authentication
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGIN_2FA_CHECK_FAILED_OPEN = "login_2fa_check_failed_open"

    # 2FA lifecycle
    TWO_FACTOR_SETUP = "2fa_setup_initiated"
    TWO_FACTOR_ENABLE = "2fa_enabled"
    TWO_FACTOR_ENABLE_FAILED = "2fa_enable_failed"
    TWO_FACTOR_DISABLE = "2fa_disabled"

    # 2FA challenges
    TWO_FACTOR_CHALLENGE_ISSUED = "2fa_challenge_issued"
    TWO_FACTOR_VERIFICATION_SUCCESS = "2fa_verification_success"
    TWO_FACTOR_VERIFICATION_FAILED = "2fa_verification_failed"
    TWO_FACTOR_VERIFICATION_BLOCKED = "2fa_verification_blocked"
    TWO_FACTOR_LOCKOUT = "2fa_lockout"
    TWO_FACTOR_BACKUP_USED = "2fa_backup_code_used"
    TWO_FACTOR_SESSIONS_PURGED = "2fa_sessions_purged"

    # Account management
    ACCOUNT_DELETE = "account_delete"
    ROLE_CHANGE = "role_change"

    # Marketplace
    PRODUCT_DELETE = "product_delete"


class AuditCategory(str, enum.Enum):
    """Categories for grouping audit events"""
    AUTHENTICATION = "authentication"
    TWO_FACTOR = "two_factor"
    USER_MANAGEMENT = "user_management"
    MARKETPLACE = "marketplace"
    SYSTEM = "system"


class AuditLog(Base):
    """
    Audit log entry for tracking user actions.

    Rows are only ever inserted; nothing in the application updates or
    deletes them.
    """
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Action identification
    action = Column(String(50), nullable=False, index=True)
    category = Column(String(30), nullable=False, index=True)

    # Actor information
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email = Column(String(255), nullable=True)  # Denormalized for history
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # Target information
    target_type = Column(String(50), nullable=True, index=True)  # e.g., "user", "product", "2fa_session"
    target_id = Column(String(100), nullable=True)

    # Action details
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action}, user={self.email})>"


ACTION_CATEGORIES = {
    AuditAction.LOGIN: AuditCategory.AUTHENTICATION,
    AuditAction.LOGIN_FAILED: AuditCategory.AUTHENTICATION,
    AuditAction.LOGIN_2FA_CHECK_FAILED_OPEN: AuditCategory.AUTHENTICATION,
    AuditAction.TWO_FACTOR_SETUP: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_ENABLE: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_ENABLE_FAILED: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_DISABLE: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_CHALLENGE_ISSUED: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_VERIFICATION_SUCCESS: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_VERIFICATION_FAILED: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_VERIFICATION_BLOCKED: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_LOCKOUT: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_BACKUP_USED: AuditCategory.TWO_FACTOR,
    AuditAction.TWO_FACTOR_SESSIONS_PURGED: AuditCategory.SYSTEM,
    AuditAction.ACCOUNT_DELETE: AuditCategory.USER_MANAGEMENT,
    AuditAction.ROLE_CHANGE: AuditCategory.USER_MANAGEMENT,
    AuditAction.PRODUCT_DELETE: AuditCategory.MARKETPLACE,
}


def get_category_for_action(action: AuditAction) -> AuditCategory:
    """Get the category for an audit action"""
    return ACTION_CATEGORIES.get(action, AuditCategory.SYSTEM)
