"""
Authentication API routes.

Endpoints:
- POST /auth/login - Login with email/password (2FA gated for owners and admins)
- GET /auth/me - Get current user info
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, AuditAction
from echoshop.config import get_settings
from echoshop.services.audit_service import AuditService
from echoshop.services.auth_service import AuthService
from echoshop.services.two_factor_gate import TwoFactorGate
from echoshop.dependencies.auth import get_current_user
from echoshop.dependencies.two_factor import get_two_factor_gate, get_session_token
from echoshop.utils.ip_utils import get_client_ip
from echoshop.schemas.auth_schemas import LoginRequest, LoginResponse, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Login with email and password"
)
async def login(
    request: Request,
    credentials: LoginRequest,
    session_token: Optional[str] = Depends(get_session_token),
    gate: TwoFactorGate = Depends(get_two_factor_gate),
    db: Session = Depends(get_db)
):
    """
    Authenticate user and return a JWT access token.

    **Authentication Flow:**
    1. User provides email and password
    2. Owners and admins with 2FA enabled receive `requires2FA: true` and a
       `twoFASessionToken` instead of an access token
    3. Client verifies the code at /auth/2fa/verify-login
    4. Client repeats the login with the verified token in the
       `x-2fa-session-token` header and receives the access token

    **Errors:**
    - 401: Invalid credentials
    - 403: Presented 2FA session is invalid or unverified
    """
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("User-Agent")
    audit = AuditService(db)

    user = AuthService.authenticate_user(db, credentials.email, credentials.password)

    if not user:
        audit.log(
            action=AuditAction.LOGIN_FAILED,
            email=credentials.email,
            ip_address=client_ip,
            user_agent=user_agent,
            description="Failed login: Invalid credentials",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    decision = gate.check_login(user, session_token=session_token, ip_address=client_ip)

    if not decision.allowed:
        return LoginResponse(
            requires_2fa=True,
            two_fa_session_token=decision.challenge.session_token,
            expires_at=decision.challenge.expires_at,
        )

    AuthService.record_login(db, user)
    audit.log_login(user, success=True, ip_address=client_ip, user_agent=user_agent)

    logger.info(f"User logged in: {user.id}")

    return LoginResponse(
        access_token=AuthService.create_token_for_user(user),
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        requires_2fa=False,
        two_factor_setup_required=decision.setup_required,
        user=UserResponse.model_validate(user),
    )


@router.get(
    "/me",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get current user"
)
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's profile"""
    return current_user
