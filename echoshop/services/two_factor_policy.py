"""
2FA requirement policy.

Decides, from a caller's role and the purpose of the request, whether a 2FA
verification must happen before the operation proceeds. Pure: no I/O.
"""

from typing import Optional, Union

from echoshop.models import UserRole, TwoFactorPurpose, CriticalActionType

# Roles that must verify on every login
LOGIN_2FA_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN})

# Roles that must verify before any critical action
CRITICAL_ACTION_2FA_ROLES = frozenset({UserRole.USER, UserRole.VENDOR, UserRole.OWNER, UserRole.ADMIN})


class TwoFactorPolicy:
    """Static role table deciding when 2FA is required"""

    def __init__(self, unknown_role_fail_closed: bool = True):
        self.unknown_role_fail_closed = unknown_role_fail_closed

    def is_required(
        self,
        role: Union[UserRole, str, None],
        purpose: Union[TwoFactorPurpose, str],
        action_type: Optional[Union[CriticalActionType, str]] = None,
    ) -> bool:
        """
        Check whether 2FA is required.

        Args:
            role: Caller role (string values from the users table are accepted)
            purpose: "login" or "critical_action"
            action_type: Critical action being attempted (any value requires 2FA)

        Returns:
            True if the caller must complete a 2FA challenge first
        """
        purpose = TwoFactorPurpose(purpose)
        parsed_role = UserRole.parse(role)

        if parsed_role is None:
            # Mis-provisioned account: never block login, but guard critical actions
            return purpose == TwoFactorPurpose.CRITICAL_ACTION and self.unknown_role_fail_closed

        if purpose == TwoFactorPurpose.LOGIN:
            return parsed_role in LOGIN_2FA_ROLES

        return parsed_role in CRITICAL_ACTION_2FA_ROLES
