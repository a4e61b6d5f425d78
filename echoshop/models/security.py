"""
Two-factor authentication models.

- UserSecuritySettings: one row per user holding the encrypted TOTP secret,
  encrypted backup codes and the failed-attempt / lockout bookkeeping.
- TwoFactorSession: short-lived challenge issued before a login or a
  critical action, verified at most once.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Text, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid
import enum
from echoshop.database import Base
from echoshop.utils.clock import utcnow


class TwoFactorPurpose(str, enum.Enum):
    """Why a challenge was issued"""
    LOGIN = "login"
    CRITICAL_ACTION = "critical_action"


class CriticalActionType(str, enum.Enum):
    """Operations that always demand a fresh 2FA verification"""
    DELETE_PRODUCT = "delete_product"
    DELETE_ACCOUNT = "delete_account"
    CHANGE_ROLE = "change_role"
    PAYOUT_REQUEST = "payout_request"
    BULK_DELETE = "bulk_delete"
    MODIFY_PRICING = "modify_pricing"
    EXPORT_DATA = "export_data"
    ADMIN_ACTION = "admin_action"


class UserSecuritySettings(Base):
    """Per-user 2FA state. Secrets and backup codes are AES-GCM envelopes."""
    __tablename__ = "user_security_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_secret_encrypted = Column(Text, nullable=True)
    two_factor_backup_codes = Column(JSON, nullable=True)  # List of encrypted codes
    two_factor_enabled_at = Column(DateTime, nullable=True)
    two_factor_last_used = Column(DateTime, nullable=True)

    # Secret issued by setup, promoted once the user confirms a code
    pending_secret_encrypted = Column(Text, nullable=True)
    pending_secret_created_at = Column(DateTime, nullable=True)

    # Lockout bookkeeping
    failed_2fa_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="security_settings")

    def is_locked(self, now=None) -> bool:
        """True while a lockout window is active"""
        if self.locked_until is None:
            return False
        return self.locked_until > (now or utcnow())

    def clear_two_factor(self):
        """Forget every piece of 2FA state"""
        self.two_factor_enabled = False
        self.two_factor_secret_encrypted = None
        self.two_factor_backup_codes = None
        self.two_factor_enabled_at = None
        self.two_factor_last_used = None
        self.pending_secret_encrypted = None
        self.pending_secret_created_at = None
        self.failed_2fa_attempts = 0
        self.locked_until = None

    def __repr__(self):
        return f"<UserSecuritySettings(user_id={self.user_id}, enabled={self.two_factor_enabled})>"


class TwoFactorSession(Base):
    """Verification challenge bound to a user, a purpose and an action type"""
    __tablename__ = "two_factor_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    session_token = Column(String(64), unique=True, nullable=False, index=True)
    purpose = Column(String(20), nullable=False)
    action_type = Column(String(32), nullable=True)
    action_context = Column(JSON, nullable=True)

    verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def is_expired(self, now=None) -> bool:
        """Expired at and after expires_at"""
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return (
            f"<TwoFactorSession(id={self.id}, user_id={self.user_id}, "
            f"purpose={self.purpose}, verified={self.verified})>"
        )
