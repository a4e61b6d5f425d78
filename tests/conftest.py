"""
Test Configuration and Fixtures

Uses a SQLite file database so the suite runs without external services.
Every test runs inside a transaction that is rolled back afterwards.
"""

import os

# Settings are cached on first import, so configure them before importing echoshop
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./echoshop_test.db")
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-not-for-production")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-not-for-production")
os.environ["DEBUG"] = "true"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_REQUEST_LOGGING"] = "false"

import uuid

import email_validator
import pyotp
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy_utils import database_exists, create_database, drop_database

from echoshop.database import Base

TEST_DATABASE_URL = os.environ["TEST_DATABASE_URL"]

TEST_PASSWORD = "CorrectHorse9!"

# Test users live on the special-use ".test" domain, which email-validator only accepts in test mode
email_validator.TEST_ENVIRONMENT = True


@pytest.fixture(scope="session")
def db_engine():
    """Create a test database engine (session-scoped for performance)"""
    # Import all models to register them with Base
    from echoshop.models import User, UserSecuritySettings, TwoFactorSession, AuditLog, VendorProduct  # noqa: F401

    if not database_exists(TEST_DATABASE_URL):
        create_database(TEST_DATABASE_URL)

    connect_args = {"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {}
    engine = create_engine(TEST_DATABASE_URL, connect_args=connect_args)

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if TEST_DATABASE_URL.startswith("sqlite"):
        drop_database(TEST_DATABASE_URL)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a test database session with transaction rollback"""
    connection = db_engine.connect()
    transaction = connection.begin()

    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection
    )
    session = TestingSessionLocal()

    yield session

    # Rollback transaction to clean up test data
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="session")
def password_hash():
    """Bcrypt hash of TEST_PASSWORD, computed once"""
    from echoshop.services.auth_service import AuthService
    return AuthService.hash_password(TEST_PASSWORD)


@pytest.fixture
def make_user(db_session, password_hash):
    """Factory creating users with a given role"""
    from echoshop.models import User

    def _make_user(role="user", email=None, is_active=True):
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@echoshop.test",
            full_name=f"Test {role.title()}",
            hashed_password=password_hash,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def owner_user(make_user):
    return make_user("owner")


@pytest.fixture
def vendor_user(make_user):
    return make_user("vendor")


@pytest.fixture
def shopper_user(make_user):
    return make_user("user")


@pytest.fixture
def cipher():
    from echoshop.services.encryption import get_secret_cipher
    return get_secret_cipher()


@pytest.fixture
def enable_2fa(db_session, cipher):
    """
    Enable 2FA for a user directly in the database.

    Returns:
        Function returning (secret, backup_codes)
    """
    from echoshop.models import UserSecuritySettings
    from echoshop.services.encryption import generate_backup_codes
    from echoshop.utils.clock import utcnow

    def _enable(user):
        secret = pyotp.random_base32()
        backup_codes = generate_backup_codes(8)
        settings_row = UserSecuritySettings(
            user_id=user.id,
            two_factor_enabled=True,
            two_factor_secret_encrypted=cipher.encrypt(secret),
            two_factor_backup_codes=[cipher.encrypt(c) for c in backup_codes],
            two_factor_enabled_at=utcnow(),
            failed_2fa_attempts=0,
        )
        db_session.add(settings_row)
        db_session.commit()
        return secret, backup_codes

    return _enable


@pytest.fixture
def auth_headers():
    """Build a Bearer header for a user"""
    from echoshop.services.auth_service import AuthService

    def _headers(user, **extra):
        headers = {"Authorization": f"Bearer {AuthService.create_token_for_user(user)}"}
        headers.update(extra)
        return headers

    return _headers


@pytest.fixture
def client(db_session):
    """Create a test client with database dependency override"""
    from fastapi.testclient import TestClient
    from echoshop.main import app
    from echoshop.database import get_db

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def verified_action_token(client, auth_headers):
    """
    Run the require and verify steps for a critical action.

    Returns:
        Function returning a verified session token
    """
    def _verified(user, secret, action_type, action_context=None):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": action_type, "actionContext": action_context},
            headers=auth_headers(user),
        )
        assert response.status_code == 200, response.text
        token = response.json()["sessionToken"]

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
            headers=auth_headers(user),
        )
        assert response.status_code == 200, response.text
        return token

    return _verified
