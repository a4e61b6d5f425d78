"""
Two-Factor Authentication API routes.

Challenge endpoints (prefix /auth/2fa):
- POST /auth/2fa/require - Decide whether 2FA is needed and issue a challenge
- POST /auth/2fa/verify - Verify a critical-action challenge (authenticated)
- POST /auth/2fa/verify-login - Verify a login challenge

Lifecycle endpoints (prefix /security/2fa):
- GET /security/2fa/status - Get 2FA status
- POST /security/2fa/setup - Start 2FA setup (generate secret)
- POST /security/2fa/enable - Confirm setup and enable 2FA
- POST /security/2fa/disable - Disable 2FA
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, TwoFactorPurpose
from echoshop.dependencies.auth import get_current_user, get_current_user_optional
from echoshop.dependencies.two_factor import get_totp_service, get_two_factor_gate
from echoshop.error_handlers import APIError, AuthenticationError, AuthorizationError, BadRequestError, NotFoundError
from echoshop.middleware.rate_limit import limiter, verify_rate_limit
from echoshop.services.totp_service import TOTPService
from echoshop.services.two_factor_gate import TwoFactorGate
from echoshop.utils.ip_utils import get_client_ip
from echoshop.schemas.two_factor_schemas import (
    TwoFactorRequireRequest,
    TwoFactorRequireResponse,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
    TwoFactorStatusResponse,
    TwoFactorSetupResponse,
    TwoFactorEnableRequest,
    TwoFactorEnableResponse,
    TwoFactorDisableRequest,
    TwoFactorDisableResponse,
)

logger = logging.getLogger(__name__)

challenge_router = APIRouter(prefix="/auth/2fa", tags=["Two-Factor Authentication"])
router = APIRouter(prefix="/security/2fa", tags=["Two-Factor Authentication"])


# ==================== Challenge ====================

@challenge_router.post(
    "/require",
    response_model=TwoFactorRequireResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Request a 2FA challenge"
)
async def require_2fa(
    request: Request,
    body: TwoFactorRequireRequest,
    current_user: Optional[User] = Depends(get_current_user_optional),
    gate: TwoFactorGate = Depends(get_two_factor_gate),
    db: Session = Depends(get_db)
):
    """
    Decide whether 2FA is required and, if so, issue a challenge session.

    **Purposes:**
    - `login`: may be called before authentication with `userId`
    - `critical_action`: requires authentication and `actionType`

    **Returns:**
    - `{required: false}` when no verification is needed
    - `{required: true, enabled: true, sessionToken, expiresAt}` otherwise

    **Errors:**
    - 401: Not authenticated (critical actions)
    - 403: 2FA required but not set up
    """
    if body.purpose == TwoFactorPurpose.LOGIN and body.user_id is not None:
        user = db.query(User).filter(User.id == body.user_id).first()
        if not user:
            raise NotFoundError("User not found", resource_type="user")
    elif current_user is None:
        raise AuthenticationError("Authentication required")
    elif body.user_id is not None and body.user_id != current_user.id:
        raise AuthorizationError("Cannot request 2FA for another user")
    else:
        user = current_user

    outcome = gate.begin(
        user,
        body.purpose,
        action_type=body.action_type,
        action_context=body.action_context,
        ip_address=get_client_ip(request),
    )

    if not outcome.required:
        return TwoFactorRequireResponse(required=False)

    if not outcome.enabled:
        raise APIError(
            "2FA must be enabled for this action. Please set up 2FA in your security settings.",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="2FA_SETUP_REQUIRED",
            extra={"required": True, "enabled": False, "requires2FA": True},
        )

    return TwoFactorRequireResponse(
        required=True,
        enabled=True,
        session_token=outcome.session.session_token,
        expires_at=outcome.session.expires_at,
    )


@challenge_router.post(
    "/verify",
    response_model=TwoFactorVerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify a critical-action challenge"
)
@limiter.limit(verify_rate_limit)
async def verify_2fa(
    request: Request,
    body: TwoFactorVerifyRequest,
    current_user: User = Depends(get_current_user),
    service: TOTPService = Depends(get_totp_service)
):
    """
    Verify a TOTP or backup code against a critical-action challenge.

    On success present `sessionToken` in the `x-2fa-session-token` header
    of the protected request.

    **Errors:**
    - 400: Invalid/expired session or wrong code (`remainingAttempts` included)
    - 403: Session belongs to another user
    - 423: Too many failed attempts
    """
    result = service.verify_challenge(
        body.session_token,
        body.code,
        body.backup_code,
        TwoFactorPurpose.CRITICAL_ACTION,
        user_id=current_user.id,
        ip_address=get_client_ip(request),
    )

    return TwoFactorVerifyResponse(
        success=True,
        user_id=result.session.user_id,
        session_token=result.session.session_token,
        used_backup_code=result.used_backup_code,
    )


@challenge_router.post(
    "/verify-login",
    response_model=TwoFactorVerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify a login challenge"
)
@limiter.limit(verify_rate_limit)
async def verify_login_2fa(
    request: Request,
    body: TwoFactorVerifyRequest,
    service: TOTPService = Depends(get_totp_service)
):
    """
    Verify a TOTP or backup code against a login challenge.

    On success repeat the login presenting `sessionToken` in the
    `x-2fa-session-token` header to receive an access token.
    """
    result = service.verify_challenge(
        body.session_token,
        body.code,
        body.backup_code,
        TwoFactorPurpose.LOGIN,
        ip_address=get_client_ip(request),
    )

    return TwoFactorVerifyResponse(
        success=True,
        user_id=result.session.user_id,
        session_token=result.session.session_token,
        used_backup_code=result.used_backup_code,
    )


# ==================== Lifecycle ====================

@router.get(
    "/status",
    response_model=TwoFactorStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get 2FA status"
)
async def get_2fa_status(
    current_user: User = Depends(get_current_user),
    service: TOTPService = Depends(get_totp_service)
):
    """
    Get the current 2FA status for the authenticated user.

    **Returns:**
    - Whether 2FA is enabled
    - When 2FA was enabled (if enabled)
    - Number of remaining backup codes
    """
    row = service.get_security_settings(current_user.id)
    enabled = bool(row and row.two_factor_enabled and row.two_factor_secret_encrypted)

    return TwoFactorStatusResponse(
        enabled=enabled,
        enabled_at=row.two_factor_enabled_at if enabled else None,
        backup_codes_remaining=service.get_backup_codes_count(row) if enabled else 0
    )


@router.post(
    "/setup",
    response_model=TwoFactorSetupResponse,
    status_code=status.HTTP_200_OK,
    summary="Start 2FA setup"
)
async def setup_2fa(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: TOTPService = Depends(get_totp_service)
):
    """
    Start the 2FA setup process.

    **Process:**
    1. Generates a new TOTP secret, kept server-side as pending
    2. Returns secret and QR code
    3. User scans QR code with authenticator app
    4. User calls /security/2fa/enable with a code within 10 minutes

    **Errors:**
    - 400: 2FA already enabled (disable it first)
    """
    if service.is_enabled(current_user.id):
        raise BadRequestError(
            "Two-factor authentication is already enabled. Disable it first to set up a new device.",
            "2FA_ALREADY_ENABLED",
        )

    secret, provisioning_uri = service.generate_secret(current_user, ip_address=get_client_ip(request))
    qr_code = service.generate_qr_code(provisioning_uri)

    return TwoFactorSetupResponse(
        secret=secret,
        qr_code=qr_code,
        provisioning_uri=provisioning_uri,
        message="Scan the QR code with your authenticator app, then confirm with a code to enable 2FA."
    )


@router.post(
    "/enable",
    response_model=TwoFactorEnableResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm setup and enable 2FA"
)
async def enable_2fa(
    request: Request,
    body: TwoFactorEnableRequest,
    current_user: User = Depends(get_current_user),
    service: TOTPService = Depends(get_totp_service)
):
    """
    Verify a TOTP code against the pending secret and enable 2FA.

    **Important:**
    - Backup codes are only shown once
    - Each backup code can only be used once
    """
    backup_codes = service.verify_and_enable(current_user, body.code, ip_address=get_client_ip(request))

    return TwoFactorEnableResponse(
        success=True,
        backup_codes=backup_codes,
        message="Two-factor authentication has been enabled. Store your backup codes securely."
    )


@router.post(
    "/disable",
    response_model=TwoFactorDisableResponse,
    status_code=status.HTTP_200_OK,
    summary="Disable 2FA"
)
async def disable_2fa(
    request: Request,
    body: TwoFactorDisableRequest,
    current_user: User = Depends(get_current_user),
    service: TOTPService = Depends(get_totp_service)
):
    """
    Disable 2FA for the current user.

    **Requirements:**
    - Must provide current password

    **What happens:**
    - Removes the TOTP secret and any pending secret
    - Clears backup codes and lockout state
    """
    if not service.is_enabled(current_user.id):
        raise BadRequestError("Two-factor authentication is not enabled", "2FA_NOT_ENABLED")

    service.disable(current_user, body.password, ip_address=get_client_ip(request))

    return TwoFactorDisableResponse(
        success=True,
        message="Two-factor authentication has been disabled."
    )
