"""Unit tests for authentication service"""
import pytest
import uuid
from datetime import timedelta
from unittest.mock import Mock, patch

from jose import jwt, JWTError

from echoshop.config import get_settings
from echoshop.services.auth_service import AuthService
from echoshop.models import User, UserRole
from echoshop.utils.clock import utcnow


@pytest.mark.unit
class TestPasswordHashing:
    """Test password hashing functionality"""

    def test_hash_password(self):
        """Test password is hashed correctly"""
        password = "SecurePassword123!"
        hashed = AuthService.hash_password(password)

        assert hashed != password
        assert hashed.startswith("$2b$12$")  # bcrypt, 12 rounds

    def test_verify_password_correct(self, password_hash):
        """Test correct password verification"""
        assert AuthService.verify_password("CorrectHorse9!", password_hash) is True

    def test_verify_password_incorrect(self, password_hash):
        """Test incorrect password verification"""
        assert AuthService.verify_password("WrongPassword", password_hash) is False

    @pytest.mark.parametrize("plain,hashed", [("", "x"), ("secret", ""), (None, None)])
    def test_verify_password_empty_input(self, plain, hashed):
        assert AuthService.verify_password(plain, hashed) is False


@pytest.mark.unit
class TestJWTTokens:
    """Test JWT token generation and validation"""

    def test_access_token_claims(self):
        user_id = str(uuid.uuid4())
        token = AuthService.create_access_token(user_id, "owner@echoshop.test", UserRole.OWNER)

        payload = AuthService.decode_token(token)

        assert payload["sub"] == user_id
        assert payload["email"] == "owner@echoshop.test"
        assert payload["role"] == "owner"
        assert payload["type"] == "access"
        assert payload["exp"] > payload["iat"]

    def test_unknown_role_kept_verbatim(self):
        token = AuthService.create_access_token(str(uuid.uuid4()), "x@echoshop.test", "superuser")

        assert AuthService.decode_token(token)["role"] == "superuser"

    def test_token_for_user(self):
        user = Mock(spec=User)
        user.id = uuid.uuid4()
        user.email = "vendor@echoshop.test"
        user.role = "vendor"

        payload = AuthService.decode_token(AuthService.create_token_for_user(user))

        assert payload["sub"] == str(user.id)
        assert payload["role"] == "vendor"

    def test_expired_token_rejected(self):
        settings = get_settings()
        past = utcnow() - timedelta(hours=2)
        token = jwt.encode(
            {"sub": "x", "type": "access", "exp": past, "iat": past - timedelta(minutes=5)},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(JWTError):
            AuthService.decode_token(token)

    def test_token_signed_with_other_key_rejected(self):
        token = jwt.encode({"sub": "x", "type": "access"}, "some-other-key", algorithm="HS256")

        with pytest.raises(JWTError):
            AuthService.decode_token(token)

    def test_expiry_follows_settings(self):
        with patch("echoshop.services.auth_service.settings") as mock_s:
            real = get_settings()
            mock_s.jwt_secret_key = real.jwt_secret_key
            mock_s.jwt_algorithm = real.jwt_algorithm
            mock_s.jwt_access_token_expire_minutes = 5

            payload = AuthService.decode_token(
                AuthService.create_access_token("id", "e@echoshop.test", "user")
            )

        assert payload["exp"] - payload["iat"] == 300


@pytest.mark.integration
class TestAuthenticateUser:
    """Test email/password authentication"""

    def test_valid_credentials(self, db_session, vendor_user):
        user = AuthService.authenticate_user(db_session, vendor_user.email, "CorrectHorse9!")

        assert user.id == vendor_user.id

    def test_email_is_case_insensitive(self, db_session, vendor_user):
        user = AuthService.authenticate_user(db_session, f"  {vendor_user.email.upper()} ", "CorrectHorse9!")

        assert user.id == vendor_user.id

    def test_wrong_password(self, db_session, vendor_user):
        assert AuthService.authenticate_user(db_session, vendor_user.email, "nope") is None

    def test_unknown_email(self, db_session):
        assert AuthService.authenticate_user(db_session, "ghost@echoshop.test", "CorrectHorse9!") is None

    def test_inactive_user(self, db_session, make_user):
        user = make_user("vendor", is_active=False)

        assert AuthService.authenticate_user(db_session, user.email, "CorrectHorse9!") is None

    def test_record_login(self, db_session, shopper_user):
        AuthService.record_login(db_session, shopper_user)
        db_session.refresh(shopper_user)

        assert shopper_user.last_login is not None
