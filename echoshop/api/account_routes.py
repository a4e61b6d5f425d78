"""
Account API routes.

Endpoints:
- POST /account/delete - Close the caller's account (2FA protected)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, TwoFactorSession, CriticalActionType, AuditAction
from echoshop.dependencies.auth import get_current_user
from echoshop.dependencies.two_factor import require_2fa
from echoshop.services.audit_service import AuditService
from echoshop.utils.ip_utils import get_client_ip
from echoshop.schemas.marketplace_schemas import AccountDeleteRequest, AccountDeleteResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["Account"])


@router.post(
    "/delete",
    response_model=AccountDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete own account"
)
async def delete_account(
    request: Request,
    body: Optional[AccountDeleteRequest] = None,
    current_user: User = Depends(get_current_user),
    verified: Optional[TwoFactorSession] = Depends(require_2fa(CriticalActionType.DELETE_ACCOUNT)),
    db: Session = Depends(get_db)
):
    """
    Close the caller's account.

    The account is deactivated rather than removed so audit history keeps
    its owner.

    **Requires:** a verified `delete_account` 2FA session in the
    `x-2fa-session-token` header.
    """
    current_user.is_active = False
    db.commit()

    AuditService(db).log_guarded_action(
        AuditAction.ACCOUNT_DELETE,
        actor=current_user,
        target_type="user",
        target_id=str(current_user.id),
        changes={
            "reason": body.reason if body else None,
            "twoFactorSessionId": str(verified.id) if verified else None,
        },
        ip_address=get_client_ip(request),
    )

    logger.info(f"Account closed: {current_user.id}")

    return AccountDeleteResponse(
        success=True,
        message="Your account has been deleted."
    )
