import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return int(raw_value)


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "")
    db_timeout_seconds: int = _env_int("DB_TIMEOUT_SECONDS", 10)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    cors_origins: tuple[str, ...] = _env_list(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    )

    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    session_token_expire_days: int = _env_int("SESSION_TOKEN_EXPIRE_DAYS", 7)

    otp_length: int = _env_int("OTP_LENGTH", 6)
    otp_ttl_seconds: int = _env_int("OTP_TTL_SECONDS", 600)
    otp_resend_cooldown_seconds: int = _env_int("OTP_RESEND_COOLDOWN_SECONDS", 60)
    otp_max_attempts: int = _env_int("OTP_MAX_ATTEMPTS", 5)
    password_min_length: int = _env_int("PASSWORD_MIN_LENGTH", 8)
    post_login_redirect: str = os.getenv("POST_LOGIN_REDIRECT", "/dashboard")
    seed_admin_email: str = os.getenv("SEED_ADMIN_EMAIL", "").strip().lower()

    email_api_url: str = os.getenv(
        "EMAIL_API_URL", "https://api.smtp2go.com/v3/email/send"
    )
    email_api_key: str = os.getenv("EMAIL_API_KEY") or os.getenv("SMTP_PASS", "")
    email_sender: str = (
        os.getenv("EMAIL_SENDER")
        or os.getenv("SMTP_FROM")
        or "Slate AI <noreply@slateai.com>"
    )
    otp_email_subject: str = os.getenv(
        "OTP_EMAIL_SUBJECT", "Your Slate AI Verification Code"
    )
    email_timeout_seconds: int = _env_int("EMAIL_TIMEOUT_SECONDS", 10)


settings = Settings()
