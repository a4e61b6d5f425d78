"""
FastAPI dependencies for 2FA.

Provides:
- Service construction per request (policy, sessions, TOTP, gate)
- require_2fa(action_type): guard for critical-action endpoints
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from echoshop.config import get_settings
from echoshop.database import get_db
from echoshop.dependencies.auth import get_current_user
from echoshop.models import User, TwoFactorSession, CriticalActionType
from echoshop.services.audit_service import AuditService
from echoshop.services.encryption import SecretCipher, get_secret_cipher
from echoshop.services.totp_service import TOTPService
from echoshop.services.two_factor_gate import TwoFactorGate
from echoshop.services.two_factor_policy import TwoFactorPolicy
from echoshop.services.two_factor_sessions import TwoFactorSessionManager

SESSION_TOKEN_HEADER = "x-2fa-session-token"
LEGACY_SESSION_TOKEN_HEADER = "2fa-session-token"


@lru_cache()
def get_two_factor_policy() -> TwoFactorPolicy:
    """Process-wide policy built from settings"""
    return TwoFactorPolicy(unknown_role_fail_closed=get_settings().two_factor_unknown_role_fail_closed)


def get_totp_service(
    db: Session = Depends(get_db),
    cipher: SecretCipher = Depends(get_secret_cipher),
) -> TOTPService:
    """TOTP service bound to the request's database session"""
    settings = get_settings()
    return TOTPService(
        db,
        cipher,
        settings=settings,
        sessions=TwoFactorSessionManager(db, settings.two_factor_session_minutes),
        audit=AuditService(db),
    )


def get_two_factor_gate(
    db: Session = Depends(get_db),
    totp: TOTPService = Depends(get_totp_service),
    policy: TwoFactorPolicy = Depends(get_two_factor_policy),
) -> TwoFactorGate:
    """Gate combining policy, sessions and TOTP state"""
    return TwoFactorGate(db, policy, totp)


def get_session_token(
    request: Request,
    x_2fa_session_token: Optional[str] = Header(None, alias=SESSION_TOKEN_HEADER),
) -> Optional[str]:
    """Read the 2FA session token from either accepted header"""
    return x_2fa_session_token or request.headers.get(LEGACY_SESSION_TOKEN_HEADER)


def require_2fa(action_type: CriticalActionType):
    """
    Create dependency that refuses the request without a verified 2FA session.

    Usage:
        @router.delete("/products/{product_id}")
        async def delete_product(
            verified: Optional[TwoFactorSession] = Depends(require_2fa(CriticalActionType.DELETE_PRODUCT)),
        ):
            ...

    Returns:
        Dependency returning the verified session (None when not required)
    """
    async def two_factor_checker(
        current_user: User = Depends(get_current_user),
        session_token: Optional[str] = Depends(get_session_token),
        gate: TwoFactorGate = Depends(get_two_factor_gate),
    ) -> Optional[TwoFactorSession]:
        return gate.check_action(current_user, action_type, session_token)

    return two_factor_checker
