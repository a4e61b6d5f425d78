"""
TOTP Service for Two-Factor Authentication.

Implements:
- TOTP secret generation (RFC 6238) and QR codes for authenticator apps
- Confirmation of a pending secret and backup code issuance
- Challenge verification for login and critical actions, with
  failed-attempt counting and temporary lockout
- Disabling 2FA
"""

import base64
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Tuple, Optional
from uuid import UUID

import pyotp
import qrcode
from sqlalchemy import Text, cast, update
from sqlalchemy.orm import Session

from echoshop.config import get_settings, Settings
from echoshop.error_handlers import APIError, AuthorizationError, LockedError
from echoshop.metrics import record_two_factor_verification, record_two_factor_lockout
from echoshop.models import User, UserSecuritySettings, TwoFactorSession, TwoFactorPurpose, AuditAction
from echoshop.services.audit_service import AuditService
from echoshop.services.auth_service import AuthService
from echoshop.services.encryption import SecretCipher, EncryptionError, generate_backup_codes
from echoshop.services.two_factor_sessions import TwoFactorSessionManager
from echoshop.utils.clock import utcnow

logger = logging.getLogger(__name__)


class TOTPError(APIError):
    """Raised when a 2FA operation is rejected"""

    def __init__(self, message: str, error_code: str = "2FA_ERROR", extra: Optional[dict] = None):
        super().__init__(message=message, status_code=400, error_code=error_code, extra=extra)


@dataclass
class VerificationResult:
    """Outcome of a successful challenge verification"""
    session: TwoFactorSession
    used_backup_code: bool = False


class TOTPService:
    """Service for TOTP two-factor authentication"""

    def __init__(
        self,
        db: Session,
        cipher: SecretCipher,
        settings: Optional[Settings] = None,
        sessions: Optional[TwoFactorSessionManager] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.cipher = cipher
        self.settings = settings or get_settings()
        self.sessions = sessions or TwoFactorSessionManager(db, self.settings.two_factor_session_minutes)
        self.audit = audit or AuditService(db)

    # ==================== Settings rows ====================

    def get_security_settings(self, user_id: UUID, for_update: bool = False) -> Optional[UserSecuritySettings]:
        """Load a user's 2FA settings row, if any (row-locked when for_update is set)"""
        query = self.db.query(UserSecuritySettings).filter(UserSecuritySettings.user_id == user_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _get_or_create_security_settings(self, user_id: UUID) -> UserSecuritySettings:
        row = self.get_security_settings(user_id)
        if row is None:
            row = UserSecuritySettings(user_id=user_id, two_factor_enabled=False, failed_2fa_attempts=0)
            self.db.add(row)
        return row

    def is_enabled(self, user_id: UUID) -> bool:
        """True when 2FA is enabled and a secret is on file"""
        row = self.get_security_settings(user_id)
        return bool(row and row.two_factor_enabled and row.two_factor_secret_encrypted)

    def get_backup_codes_count(self, row: Optional[UserSecuritySettings]) -> int:
        """Number of unused backup codes"""
        if not row or not row.two_factor_backup_codes:
            return 0
        return len(row.two_factor_backup_codes)

    # ==================== Setup ====================

    def generate_secret(self, user: User, ip_address: Optional[str] = None) -> Tuple[str, str]:
        """
        Generate a new TOTP secret for the user.

        Args:
            user: User to generate secret for
            ip_address: Client IP for the audit trail

        Returns:
            Tuple of (secret, provisioning_uri)

        Note:
            The secret is kept as pending until verify_and_enable() confirms it;
            an already enabled secret keeps working meanwhile.
        """
        secret = pyotp.random_base32(length=32)

        totp = pyotp.TOTP(secret)
        provisioning_uri = totp.provisioning_uri(
            name=user.email,
            issuer_name=self.settings.two_factor_issuer
        )

        row = self._get_or_create_security_settings(user.id)
        row.pending_secret_encrypted = self.cipher.encrypt(secret)
        row.pending_secret_created_at = utcnow()
        self.db.commit()

        self.audit.log(
            action=AuditAction.TWO_FACTOR_SETUP,
            user=user,
            ip_address=ip_address,
            description="2FA setup initiated",
        )

        logger.info(f"TOTP secret generated for user: {user.id}")

        return secret, provisioning_uri

    def generate_qr_code(self, provisioning_uri: str) -> str:
        """
        Generate QR code image as a data URL.

        Args:
            provisioning_uri: TOTP provisioning URI

        Returns:
            "data:image/png;base64,..." string
        """
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')

        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode('utf-8')

    def verify_code(self, secret: str, code: str, now: Optional[datetime] = None) -> bool:
        """
        Check a 6-digit TOTP code against a plaintext secret.

        Args:
            secret: Base32 TOTP secret
            code: Code from the authenticator app
            now: Naive UTC instant to check at (defaults to the current time)

        Returns:
            True if the code matches within the configured window
        """
        if not secret or not code:
            return False

        for_time = (now or utcnow()).replace(tzinfo=timezone.utc)
        totp = pyotp.TOTP(secret)
        return totp.verify(code, for_time=for_time, valid_window=self.settings.two_factor_totp_valid_window)

    def verify_and_enable(
        self,
        user: User,
        code: str,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """
        Confirm the pending secret and enable 2FA.

        Args:
            user: User to enable 2FA for
            code: 6-digit TOTP code
            ip_address: Client IP for the audit trail

        Returns:
            List of plaintext backup codes (shown once)

        Raises:
            TOTPError: If setup was not started, has expired, or the code is invalid
        """
        now = now or utcnow()
        row = self.get_security_settings(user.id)

        if not row or not row.pending_secret_encrypted:
            raise TOTPError("2FA setup has not been started. Call setup first.", "SETUP_NOT_STARTED")

        window = timedelta(minutes=self.settings.two_factor_setup_window_minutes)
        if row.pending_secret_created_at is None or now - row.pending_secret_created_at > window:
            raise TOTPError("2FA setup has expired. Please start again.", "SETUP_EXPIRED")

        secret = self.cipher.decrypt(row.pending_secret_encrypted)

        if not self.verify_code(secret, code, now):
            self.audit.log(
                action=AuditAction.TWO_FACTOR_ENABLE_FAILED,
                user=user,
                ip_address=ip_address,
                description="2FA enable failed: invalid code",
                details={"reason": "invalid_code"},
            )
            raise TOTPError("Invalid verification code. Please try again.", "INVALID_CODE")

        backup_codes = generate_backup_codes(self.settings.two_factor_backup_code_count)

        row.two_factor_enabled = True
        row.two_factor_secret_encrypted = self.cipher.encrypt(secret)
        row.two_factor_backup_codes = [self.cipher.encrypt(c) for c in backup_codes]
        row.two_factor_enabled_at = now
        row.failed_2fa_attempts = 0
        row.locked_until = None
        row.pending_secret_encrypted = None
        row.pending_secret_created_at = None
        self.db.commit()

        self.audit.log(
            action=AuditAction.TWO_FACTOR_ENABLE,
            user=user,
            ip_address=ip_address,
            description="2FA enabled",
        )

        logger.info(f"2FA enabled for user: {user.id}")

        return backup_codes

    def disable(self, user: User, password: str, ip_address: Optional[str] = None) -> bool:
        """
        Disable 2FA for a user and clear every stored secret.

        Raises:
            TOTPError: If password is incorrect
        """
        if not AuthService.verify_password(password, user.hashed_password):
            raise TOTPError("Invalid password", "INVALID_PASSWORD")

        row = self._get_or_create_security_settings(user.id)
        row.clear_two_factor()
        self.db.commit()

        self.audit.log(
            action=AuditAction.TWO_FACTOR_DISABLE,
            user=user,
            ip_address=ip_address,
            description="2FA disabled",
        )

        logger.info(f"2FA disabled for user: {user.id}")

        return True

    # ==================== Challenge verification ====================

    def verify_challenge(
        self,
        session_token: Optional[str],
        code: Optional[str],
        backup_code: Optional[str],
        expected_purpose: TwoFactorPurpose,
        user_id: Optional[UUID] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """
        Verify a code against a challenge session and mark it verified.

        Args:
            session_token: Token issued by the require step
            code: 6-digit TOTP code
            backup_code: One of the 8-digit backup codes
            expected_purpose: Purpose served by the calling endpoint
            user_id: Authenticated caller, when the endpoint requires one
            ip_address: Client IP for the audit trail
            now: Naive UTC instant to evaluate at

        Returns:
            VerificationResult with the now verified session

        Raises:
            TOTPError: Malformed, mismatched, expired or wrong-code attempts (400)
            AuthorizationError: Session belongs to another user (403)
            LockedError: Lockout window active (423)
        """
        now = now or utcnow()

        if not session_token:
            raise TOTPError("Session token is required.", "SESSION_TOKEN_REQUIRED")

        if not code and not backup_code:
            raise TOTPError("Verification code is required.", "CODE_REQUIRED")

        session = self.sessions.get_by_token(session_token)
        if session is None:
            raise TOTPError("Invalid or expired session.", "INVALID_SESSION")

        if session.verified:
            raise self._reject(session, TOTPError("Session already verified.", "SESSION_ALREADY_VERIFIED"), ip_address)

        if session.is_expired(now):
            raise self._reject(session, TOTPError("Session expired. Please start again.", "SESSION_EXPIRED"), ip_address)

        if session.purpose != expected_purpose.value:
            raise self._reject(session, TOTPError("Invalid session type.", "INVALID_SESSION_TYPE"), ip_address)

        if user_id is not None and session.user_id != user_id:
            raise self._reject(
                session,
                AuthorizationError("Session does not match user."),
                ip_address,
                reason="SESSION_USER_MISMATCH",
            )

        row = self.get_security_settings(session.user_id, for_update=True)
        if not row or not row.two_factor_secret_encrypted:
            raise self._reject(
                session,
                TOTPError(
                    "2FA is not enabled for this account.",
                    "2FA_NOT_ENABLED",
                    extra={"setupRequired": True},
                ),
                ip_address,
            )

        if row.is_locked(now):
            self.audit.log_verification(
                session,
                AuditAction.TWO_FACTOR_VERIFICATION_BLOCKED,
                ip_address=ip_address,
                locked_until=row.locked_until.isoformat(),
            )
            record_two_factor_verification(session.purpose, "locked")
            raise LockedError(
                "Account is temporarily locked due to too many failed attempts. Please try again later."
            )

        remaining_codes = None
        if backup_code:
            remaining_codes = self._spend_backup_code(row, backup_code)

        used_backup_code = remaining_codes is not None
        is_valid = used_backup_code

        if not is_valid and code:
            is_valid = self._check_totp(row, session, code, ip_address, now)

        if not is_valid:
            self._record_failure(row, session, ip_address, now)

        row.failed_2fa_attempts = 0
        row.locked_until = None
        row.two_factor_last_used = now
        self.db.commit()

        if not self.sessions.mark_verified(session_token, now):
            logger.error(f"2FA session {session.id} could not be marked verified")
            raise APIError("Failed to verify session.", status_code=500, error_code="2FA_SESSION_ERROR")

        self.audit.log_verification(
            session,
            AuditAction.TWO_FACTOR_VERIFICATION_SUCCESS,
            ip_address=ip_address,
            method="backup_code" if used_backup_code else "totp",
        )
        if used_backup_code:
            self.audit.log_verification(
                session,
                AuditAction.TWO_FACTOR_BACKUP_USED,
                ip_address=ip_address,
                backup_codes_remaining=len(remaining_codes),
            )

        record_two_factor_verification(session.purpose, "success")
        logger.info(f"2FA verification succeeded: user={session.user_id} purpose={session.purpose}")

        return VerificationResult(session=session, used_backup_code=used_backup_code)

    def _reject(
        self,
        session: TwoFactorSession,
        error: APIError,
        ip_address: Optional[str],
        reason: Optional[str] = None,
    ) -> APIError:
        """Audit a refused attempt on a known session and hand back the error to raise"""
        self.audit.log_verification(
            session,
            AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
            ip_address=ip_address,
            reason=reason or error.error_code,
        )
        record_two_factor_verification(session.purpose, "rejected")
        logger.warning(f"2FA attempt rejected: user={session.user_id} reason={reason or error.error_code}")
        return error

    def _find_backup_code(self, row: UserSecuritySettings, stored: List[str], backup_code: str) -> Optional[int]:
        """Index of the stored backup code equal to the submitted one, or None"""
        for index, envelope in enumerate(stored):
            try:
                candidate = self.cipher.decrypt(envelope)
            except EncryptionError:
                logger.error(f"Unreadable backup code #{index} for user {row.user_id}")
                continue
            if candidate == backup_code:
                return index
        return None

    def _spend_backup_code(self, row: UserSecuritySettings, backup_code: str) -> Optional[List[str]]:
        """
        Remove a matching backup code from the stored list.

        The write is conditional on the list being unchanged since it was
        read. If another request changed it first, the row is reloaded and
        the code looked up again, so a code can only be spent once.

        Returns:
            The remaining codes, or None if nothing matched
        """
        for _ in range(self.settings.two_factor_backup_code_count + 1):
            stored = list(row.two_factor_backup_codes or [])
            index = self._find_backup_code(row, stored, backup_code)
            if index is None:
                return None

            remaining = stored[:index] + stored[index + 1:]
            result = self.db.execute(
                update(UserSecuritySettings)
                .where(UserSecuritySettings.id == row.id)
                .where(cast(UserSecuritySettings.two_factor_backup_codes, Text) == json.dumps(stored))
                .values(two_factor_backup_codes=remaining)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return remaining

            logger.info(f"Backup codes for user {row.user_id} changed concurrently, re-reading")
            self.db.refresh(row)
        return None

    def _check_totp(
        self,
        row: UserSecuritySettings,
        session: TwoFactorSession,
        code: str,
        ip_address: Optional[str],
        now: datetime,
    ) -> bool:
        try:
            secret = self.cipher.decrypt(row.two_factor_secret_encrypted)
        except EncryptionError as e:
            logger.error(f"Stored TOTP secret for user {row.user_id} cannot be decrypted")
            self.audit.log_verification(
                session,
                AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
                ip_address=ip_address,
                reason="secret_unreadable",
            )
            raise APIError("Unable to verify 2FA code.", status_code=500, error_code="2FA_SECRET_ERROR") from e

        return self.verify_code(secret, code, now)

    def _record_failure(
        self,
        row: UserSecuritySettings,
        session: TwoFactorSession,
        ip_address: Optional[str],
        now: datetime,
    ):
        """Count a failed check, lock if the threshold is reached, then raise"""
        max_attempts = self.settings.two_factor_max_failed_attempts

        # Increment in SQL so concurrent failures are all counted
        self.db.execute(
            update(UserSecuritySettings)
            .where(UserSecuritySettings.id == row.id)
            .values(failed_2fa_attempts=UserSecuritySettings.failed_2fa_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(row)
        attempts = row.failed_2fa_attempts

        locked = attempts >= max_attempts
        if locked:
            row.locked_until = now + timedelta(minutes=self.settings.two_factor_lockout_minutes)
        self.db.commit()

        self.audit.log_verification(
            session,
            AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
            ip_address=ip_address,
            failed_attempts=attempts,
        )
        if locked:
            self.audit.log_verification(
                session,
                AuditAction.TWO_FACTOR_LOCKOUT,
                ip_address=ip_address,
                locked_until=row.locked_until.isoformat(),
            )
            record_two_factor_lockout(session.purpose)
            logger.warning(f"2FA locked for user {row.user_id} after {attempts} failed attempts")

        record_two_factor_verification(session.purpose, "failed")

        raise TOTPError(
            "Invalid verification code. Please try again.",
            "INVALID_CODE",
            extra={"remainingAttempts": max(0, max_attempts - attempts)},
        )
