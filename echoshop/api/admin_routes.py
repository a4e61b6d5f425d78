"""
Admin API routes.

Endpoints:
- PATCH /admin/users/{user_id}/role - Change a user's role (2FA protected)
- POST /admin/security/2fa/sessions/purge - Delete expired 2FA sessions now
- GET /admin/security/audit-logs - Browse security audit events
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, TwoFactorSession, CriticalActionType, AuditAction
from echoshop.dependencies.auth import require_admin
from echoshop.dependencies.two_factor import require_2fa
from echoshop.error_handlers import NotFoundError, BadRequestError
from echoshop.services.audit_service import AuditService
from echoshop.services.scheduler import purge_expired_sessions
from echoshop.utils.ip_utils import get_client_ip
from echoshop.schemas.marketplace_schemas import (
    AuditLogEntry,
    AuditLogListResponse,
    RoleChangeRequest,
    RoleChangeResponse,
)
from echoshop.schemas.two_factor_schemas import SessionPurgeResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Administration"])


@router.patch(
    "/users/{user_id}/role",
    response_model=RoleChangeResponse,
    status_code=status.HTTP_200_OK,
    summary="Change user role"
)
async def change_role(
    user_id: UUID,
    body: RoleChangeRequest,
    request: Request,
    current_user: User = Depends(require_admin()),
    verified: Optional[TwoFactorSession] = Depends(require_2fa(CriticalActionType.CHANGE_ROLE)),
    db: Session = Depends(get_db)
):
    """
    Change another user's role.

    **Requires:** admin or owner role and a verified `change_role` 2FA
    session in the `x-2fa-session-token` header.

    **Errors:**
    - 400: Attempt to change own role
    - 404: User not found
    """
    if user_id == current_user.id:
        raise BadRequestError("You cannot change your own role", "SELF_ROLE_CHANGE")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found", resource_type="user")

    previous_role = user.role
    user.role = body.role.value
    db.commit()

    AuditService(db).log_guarded_action(
        AuditAction.ROLE_CHANGE,
        actor=current_user,
        target_type="user",
        target_id=str(user.id),
        changes={
            "role": {"old": previous_role, "new": user.role},
            "twoFactorSessionId": str(verified.id) if verified else None,
        },
        ip_address=get_client_ip(request),
    )

    logger.info(f"Role of user {user.id} changed from {previous_role} to {user.role} by {current_user.id}")

    return RoleChangeResponse(
        success=True,
        user_id=user.id,
        previous_role=previous_role,
        role=user.role
    )


@router.post(
    "/security/2fa/sessions/purge",
    response_model=SessionPurgeResponse,
    status_code=status.HTTP_200_OK,
    summary="Purge expired 2FA sessions"
)
async def purge_sessions(
    current_user: User = Depends(require_admin()),
    db: Session = Depends(get_db)
):
    """Delete expired 2FA challenge sessions without waiting for the scheduled job"""
    removed = purge_expired_sessions(db)

    logger.info(f"Manual 2FA session purge by {current_user.id}: {removed} removed")

    return SessionPurgeResponse(removed=removed)


@router.get(
    "/security/audit-logs",
    response_model=AuditLogListResponse,
    summary="List security audit events"
)
async def list_audit_logs(
    action: Optional[str] = Query(None, description="Exact action, e.g. 2fa_lockout"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    target_type: Optional[str] = Query(None, alias="targetType"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_admin()),
    db: Session = Depends(get_db)
):
    """Audit events newest first, filtered by any combination of action, actor and target type"""
    entries = AuditService(db).get_logs(
        action=action,
        user_id=user_id,
        target_type=target_type,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        entries=[AuditLogEntry.model_validate(entry) for entry in entries],
        limit=limit,
        offset=offset,
    )
