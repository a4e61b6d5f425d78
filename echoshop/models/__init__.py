"""
SQLAlchemy models for the Echo Shop security backend.

All models are exported from this module for easy importing.
"""

# User models
from echoshop.models.user import User, UserRole

# 2FA models
from echoshop.models.security import (
    UserSecuritySettings, TwoFactorSession, TwoFactorPurpose, CriticalActionType
)

# Audit models
from echoshop.models.audit import (
    AuditLog, AuditAction, AuditCategory, get_category_for_action
)

# Marketplace models
from echoshop.models.vendor import VendorProduct

__all__ = [
    # User models
    "User",
    "UserRole",
    # 2FA models
    "UserSecuritySettings",
    "TwoFactorSession",
    "TwoFactorPurpose",
    "CriticalActionType",
    # Audit models
    "AuditLog",
    "AuditAction",
    "AuditCategory",
    "get_category_for_action",
    # Marketplace models
    "VendorProduct",
]
