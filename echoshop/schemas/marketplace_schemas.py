"""
Pydantic schemas for the 2FA-protected marketplace and admin actions.
"""

from datetime import datetime
from pydantic import ConfigDict, Field
from typing import Any, Dict, List, Optional
from uuid import UUID

from echoshop.models import UserRole
from echoshop.schemas.two_factor_schemas import CamelModel


class ProductDeleteResponse(CamelModel):
    """Product removed by its vendor"""
    success: bool
    product_id: UUID
    message: str


class AccountDeleteRequest(CamelModel):
    """Close the caller's account"""
    reason: Optional[str] = Field(None, max_length=500, description="Optional reason, kept in the audit log")


class AccountDeleteResponse(CamelModel):
    """Account closed"""
    success: bool
    message: str


class RoleChangeRequest(CamelModel):
    """New role for a user"""
    role: UserRole = Field(..., description="user, vendor, owner or admin")


class RoleChangeResponse(CamelModel):
    """Role changed"""
    success: bool
    user_id: UUID
    previous_role: str
    role: str


class AuditLogEntry(CamelModel):
    """One audit row as shown to administrators"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: str
    category: str
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    description: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class AuditLogListResponse(CamelModel):
    entries: List[AuditLogEntry]
    limit: int
    offset: int
