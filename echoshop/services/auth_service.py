"""
Password and access-token handling.

Passwords are bcrypt hashes (12 rounds). Access tokens are HS256 JWTs whose
``role`` claim carries the stored role string verbatim, unknown roles
included, so the 2FA policy can decide how to treat them.
"""

from datetime import timedelta
from typing import Optional, Union

from jose import jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from echoshop.config import get_settings
from echoshop.models import User, UserRole
from echoshop.utils.clock import utcnow

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

ACCESS_TOKEN_TYPE = "access"


class AuthService:

    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: Optional[str], hashed_password: Optional[str]) -> bool:
        """False for empty input or an unrecognised hash, never an exception"""
        if not plain_password or not hashed_password:
            return False
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            return False

    @staticmethod
    def create_access_token(user_id: str, email: str, role: Union[UserRole, str]) -> str:
        issued_at = utcnow()
        claims = {
            "sub": user_id,
            "email": email,
            "role": role.value if isinstance(role, UserRole) else role,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        }
        return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    @staticmethod
    def create_token_for_user(user: User) -> str:
        return AuthService.create_access_token(str(user.id), user.email, user.role)

    @staticmethod
    def decode_token(token: str) -> dict:
        """
        Verify signature and expiry and return the claims.

        Raises:
            JWTError: Token is malformed, forged or expired
        """
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """
        The active account matching the credentials, or None.

        Unknown emails, wrong passwords and deactivated accounts are
        indistinguishable to the caller.
        """
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if user is None or not user.is_active:
            return None
        if not AuthService.verify_password(password, user.hashed_password):
            return None
        return user

    @staticmethod
    def record_login(db: Session, user: User) -> None:
        user.last_login = utcnow()
        db.commit()
