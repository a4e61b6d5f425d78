"""Unit tests for the 2FA requirement policy (two_factor_policy.py)"""
import pytest

from echoshop.models import UserRole, TwoFactorPurpose, CriticalActionType
from echoshop.services.two_factor_policy import TwoFactorPolicy


@pytest.fixture
def policy():
    return TwoFactorPolicy()


@pytest.mark.unit
class TestLoginPolicy:
    """Which roles must verify at login"""

    @pytest.mark.parametrize("role", ["owner", "admin", UserRole.OWNER, UserRole.ADMIN])
    def test_privileged_roles_require_login_2fa(self, policy, role):
        assert policy.is_required(role, TwoFactorPurpose.LOGIN) is True

    @pytest.mark.parametrize("role", ["user", "vendor"])
    def test_other_roles_skip_login_2fa(self, policy, role):
        assert policy.is_required(role, "login") is False

    @pytest.mark.parametrize("role", [None, "", "superuser"])
    def test_unknown_role_never_blocks_login(self, policy, role):
        assert policy.is_required(role, TwoFactorPurpose.LOGIN) is False

    def test_role_is_case_insensitive(self, policy):
        assert policy.is_required("ADMIN", TwoFactorPurpose.LOGIN) is True


@pytest.mark.unit
class TestCriticalActionPolicy:
    """Every known role must verify before a critical action"""

    @pytest.mark.parametrize("role", ["user", "vendor", "owner", "admin"])
    @pytest.mark.parametrize("action", list(CriticalActionType))
    def test_all_roles_require_2fa(self, policy, role, action):
        assert policy.is_required(role, TwoFactorPurpose.CRITICAL_ACTION, action) is True

    def test_unknown_role_fails_closed_by_default(self, policy):
        assert policy.is_required("superuser", "critical_action", "delete_account") is True

    def test_unknown_role_can_fail_open(self):
        policy = TwoFactorPolicy(unknown_role_fail_closed=False)

        assert policy.is_required("superuser", "critical_action", "delete_account") is False

    def test_invalid_purpose_raises(self, policy):
        with pytest.raises(ValueError):
            policy.is_required("admin", "checkout")
