"""
User profile model.

Every marketplace account (shopper, vendor, owner, admin) is a row here.
The role drives both route authorization and the 2FA requirement policy.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Uuid
from sqlalchemy.orm import relationship
import uuid
import enum
from echoshop.database import Base
from echoshop.utils.clock import utcnow


class UserRole(str, enum.Enum):
    """User roles for RBAC"""
    USER = "user"        # Shopper / social member
    VENDOR = "vendor"    # Marketplace seller
    OWNER = "owner"      # Platform owner, same privileges as admin
    ADMIN = "admin"      # Back office staff

    @classmethod
    def parse(cls, value):
        """Return the matching role, or None for a missing or unrecognised value"""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class User(Base):
    """Account profile with a role"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=False)

    # Stored as string so a mis-provisioned role survives to the 2FA policy
    role = Column(String(20), nullable=False, default=UserRole.USER.value)

    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)

    # Relationships
    security_settings = relationship(
        "UserSecuritySettings",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
