from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"
    APP_NAME: str = "SkinMate"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Sessions (one per device)
    TOKEN_PEPPER: str = "CHANGE_ME"
    SESSION_TOKEN_BYTES: int = 32
    SESSION_REVOKE_MODE: Literal["soft", "hard"] = "soft"
    LOGIN_SESSION_POLICY: Literal["rotate", "reuse"] = "rotate"
    ACCOUNT_DELETE_REVOKES_SESSIONS: bool = False

    PASSWORD_MIN_LENGTH: int = 6

    # One-time codes
    OTP_CODE_MODE: Literal["totp", "hotp"] = "totp"
    OTP_DIGITS: int = 6
    OTP_INTERVAL_SECONDS: int = 300
    OTP_VALID_WINDOW: int = 1
    OTP_TTL_MINUTES: int = 10  # 0 = challenges never expire
    OTP_MAX_ATTEMPTS: int = 5  # 0 = unlimited wrong guesses
    OTP_RETENTION_DAYS: int = 30

    # Delivery
    EMAIL_BACKEND: Literal["console", "smtp"] = "console"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_STARTTLS: bool = True
    SMTP_TIMEOUT_SECONDS: int = 10
    MAIL_FROM: str = "SkinMate <no-reply@skinmate.app>"

    SMS_BACKEND: Literal["console", "twilio"] = "console"
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM: str | None = None
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"
    SMS_TIMEOUT_SECONDS: int = 10

    AVATAR_MAX_BYTES: int = 1_000_000

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

settings = Settings()
