"""
Pydantic schemas for authentication and user profiles.
"""

from pydantic import ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from echoshop.schemas.two_factor_schemas import CamelModel


class LoginRequest(CamelModel):
    """Login request with email and password"""
    email: EmailStr = Field(..., description="Account email address")
    password: str = Field(..., min_length=1, description="Password")


class UserResponse(CamelModel):
    """User profile"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None


class LoginResponse(CamelModel):
    """
    Login result.

    Either tokens are issued, or a 2FA challenge is returned and the client
    must verify it and log in again presenting the verified token.
    """
    access_token: Optional[str] = Field(None, description="JWT access token")
    token_type: Optional[str] = Field(None, description="Token type")
    expires_in: Optional[int] = Field(None, description="Access token expiration in seconds")
    requires_2fa: bool = Field(False, alias="requires2FA", description="Whether 2FA verification is required")
    two_fa_session_token: Optional[str] = Field(None, alias="twoFASessionToken", description="Login challenge token")
    expires_at: Optional[datetime] = Field(None, description="Challenge expiry (UTC)")
    two_factor_setup_required: bool = Field(False, description="Role requires 2FA but it is not set up yet")
    user: Optional[UserResponse] = None
