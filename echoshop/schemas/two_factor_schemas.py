"""
Pydantic schemas for Two-Factor Authentication.

All bodies are camelCase on the wire and reject unknown fields.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import UUID

from echoshop.models import TwoFactorPurpose, CriticalActionType


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ==================== Challenge ====================

class TwoFactorRequireRequest(CamelModel):
    """Ask whether 2FA is required, issuing a challenge if so"""
    purpose: TwoFactorPurpose = Field(TwoFactorPurpose.LOGIN, description="login or critical_action")
    action_type: Optional[CriticalActionType] = Field(None, description="Required for critical_action")
    action_context: Optional[Dict[str, Any]] = Field(None, description="Free-form context stored with the session")
    user_id: Optional[UUID] = Field(None, description="Account being logged into (login purpose only)")

    @model_validator(mode="after")
    def check_action_type(self):
        if self.purpose == TwoFactorPurpose.CRITICAL_ACTION and self.action_type is None:
            raise ValueError("actionType is required for critical_action")
        return self


class TwoFactorRequireResponse(CamelModel):
    """Challenge decision"""
    required: bool = Field(..., description="Whether 2FA must be completed")
    enabled: Optional[bool] = Field(None, description="Whether the user has 2FA enabled")
    session_token: Optional[str] = Field(None, description="Challenge token to verify")
    expires_at: Optional[datetime] = Field(None, description="Challenge expiry (UTC)")


class TwoFactorVerifyRequest(CamelModel):
    """Submit a code against a challenge"""
    session_token: Optional[str] = Field(None, max_length=64, description="Challenge token")
    code: Optional[str] = Field(None, pattern=r"^\d{6}$", description="6-digit TOTP code")
    backup_code: Optional[str] = Field(None, pattern=r"^\d{8}$", description="8-digit backup code")


class TwoFactorVerifyResponse(CamelModel):
    """Successful verification"""
    success: bool = Field(..., description="Always true")
    user_id: UUID = Field(..., description="Owner of the verified session")
    session_token: str = Field(..., description="Now verified token to present to the protected action")
    used_backup_code: bool = Field(False, description="Whether a backup code was consumed")


# ==================== Lifecycle ====================

class TwoFactorStatusResponse(CamelModel):
    """2FA status for current user"""
    enabled: bool = Field(..., description="Whether 2FA is enabled")
    enabled_at: Optional[datetime] = Field(None, description="When 2FA was enabled")
    backup_codes_remaining: int = Field(0, description="Number of backup codes remaining")


class TwoFactorSetupResponse(CamelModel):
    """Response when starting 2FA setup"""
    secret: str = Field(..., description="Base32 encoded TOTP secret for manual entry")
    qr_code: str = Field(..., description="QR code as a PNG data URL")
    provisioning_uri: str = Field(..., description="otpauth:// URI")
    message: str = Field(..., description="Next step")


class TwoFactorEnableRequest(CamelModel):
    """Confirm setup with a code from the authenticator app"""
    code: str = Field(..., pattern=r"^\d{6}$", description="6-digit TOTP code")


class TwoFactorEnableResponse(CamelModel):
    """Response when 2FA is enabled"""
    success: bool = Field(..., description="Whether 2FA was enabled")
    backup_codes: List[str] = Field(..., description="Backup codes (shown once)")
    message: str = Field(..., description="Status message")


class TwoFactorDisableRequest(CamelModel):
    """Request to disable 2FA"""
    password: str = Field(..., min_length=1, description="Current password for verification")


class TwoFactorDisableResponse(CamelModel):
    """Response when 2FA is disabled"""
    success: bool = Field(..., description="Whether 2FA was disabled")
    message: str = Field(..., description="Status message")


class SessionPurgeResponse(CamelModel):
    """Result of a manual purge"""
    removed: int = Field(..., description="Expired sessions deleted")
