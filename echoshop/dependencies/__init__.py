"""
FastAPI dependencies for Echo Shop security.
"""

from echoshop.dependencies.auth import (
    get_current_user,
    get_current_user_optional,
    require_admin,
    require_vendor,
    require_role,
)
from echoshop.dependencies.two_factor import (
    get_two_factor_policy,
    get_totp_service,
    get_two_factor_gate,
    get_session_token,
    require_2fa,
)

__all__ = [
    "get_current_user",
    "get_current_user_optional",
    "require_admin",
    "require_vendor",
    "require_role",
    "get_two_factor_policy",
    "get_totp_service",
    "get_two_factor_gate",
    "get_session_token",
    "require_2fa",
]
