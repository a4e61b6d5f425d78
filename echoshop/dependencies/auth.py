"""
Authentication dependencies.

Resolve the caller from the Bearer access token and gate routes by role.
Unknown role strings on a token never match any allowed role.
"""

import uuid
from typing import Optional
from fastapi import Depends, HTTPException, status, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, UserRole
from echoshop.services.auth_service import AuthService

bearer_scheme = HTTPBearer(auto_error=False)

VENDOR_ROLES = (UserRole.VENDOR, UserRole.ADMIN, UserRole.OWNER)
ADMIN_ROLES = (UserRole.ADMIN, UserRole.OWNER)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from_token(token: str) -> uuid.UUID:
    """Validate an access token and return its subject"""
    try:
        payload = AuthService.decode_token(token)
    except JWTError:
        raise _unauthorized("Could not validate credentials")

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    try:
        return uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError):
        raise _unauthorized("Invalid token payload")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    The active user named by the Bearer token.

    Raises:
        HTTPException: 401 when the token is missing, invalid or names no
            user; 403 when the account is deactivated
    """
    if not credentials:
        raise _unauthorized("Authentication required")

    user = db.query(User).filter(User.id == _user_id_from_token(credentials.credentials)).first()
    if not user:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but anonymous or invalid callers yield None"""
    if not credentials:
        return None
    try:
        return await get_current_user(credentials, db)
    except HTTPException:
        return None


def require_role(*allowed_roles: UserRole):
    """
    Build a dependency admitting only users holding one of ``allowed_roles``.

    Usage:
        @router.delete("/products/{product_id}")
        async def delete_product(user: User = Depends(require_role(*VENDOR_ROLES))):
            ...
    """
    async def role_checker(user: User = Depends(get_current_user)) -> User:
        if UserRole.parse(user.role) not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required role: {', '.join(r.value for r in allowed_roles)}"
            )
        return user

    return role_checker


def require_admin():
    return require_role(*ADMIN_ROLES)


def require_vendor():
    """Vendors, plus admins and owners acting on their behalf"""
    return require_role(*VENDOR_ROLES)
