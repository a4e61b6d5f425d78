from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "postgresql://echoshop:echoshop@db:5432/echoshop"

    # Application
    app_name: str = "Echo Shop"
    debug: bool = False
    log_level: str = "INFO"

    # Logging
    log_dir: str = ""  # Empty disables file logging
    log_json: bool = False  # Enable JSON logging for production
    enable_request_logging: bool = True

    # JWT Authentication
    jwt_secret_key: str = ""  # REQUIRED: Generate with: python -c "import secrets; print(secrets.token_urlsafe(64))"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    # Encryption of 2FA secrets at rest
    encryption_key: str = ""  # REQUIRED in production, the key is derived from it once per process
    encryption_salt: str = "echoshop-2fa-salt"

    # Two-Factor Authentication
    two_factor_issuer: str = "Echo Shop"
    two_factor_session_minutes: int = 10
    two_factor_setup_window_minutes: int = 10
    two_factor_max_failed_attempts: int = 5
    two_factor_lockout_minutes: int = 30
    two_factor_backup_code_count: int = 8
    two_factor_totp_valid_window: int = 1  # +/- 30 second steps
    two_factor_login_fail_open: bool = True  # Allow login when the 2FA check itself errors
    two_factor_unknown_role_fail_closed: bool = True  # Require 2FA for critical actions of unknown roles
    two_factor_session_purge_interval_minutes: int = 15

    # Background jobs
    enable_scheduler: bool = True

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/minute"
    two_factor_verify_rate_limit: str = "10/minute"

    # HTTP hardening
    cors_origins: str = ""  # Comma-separated, empty disables CORS
    max_request_size: int = 1024 * 1024  # 1MB, JSON bodies only
    enable_hsts: bool = True

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated origins"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
