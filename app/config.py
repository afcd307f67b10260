import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


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


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return float(raw_value)


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./notifications.db")
    db_timeout_seconds: int = _env_int("DB_TIMEOUT_SECONDS", 5)
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_socket_timeout: float = _env_float("REDIS_SOCKET_TIMEOUT", 2.0)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    cors_origins: tuple = tuple(
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "").split(",")
        if origin.strip()
    )

    otp_email_length: int = _env_int("OTP_EMAIL_LENGTH", 6)
    otp_email_ttl_seconds: int = _env_int("OTP_EMAIL_TTL_SECONDS", 600)
    otp_phone_length: int = _env_int("OTP_PHONE_LENGTH", 7)
    otp_phone_ttl_seconds: int = _env_int("OTP_PHONE_TTL_SECONDS", 300)
    otp_max_attempts: int = _env_int("OTP_MAX_ATTEMPTS", 3)
    otp_debug: bool = _env_bool("OTP_DEBUG", False)
    otp_rate_limit_max: int = _env_int("OTP_RATE_LIMIT_MAX", 5)
    otp_rate_limit_window_seconds: int = _env_int("OTP_RATE_LIMIT_WINDOW_SECONDS", 60)
    otp_retention_days: int = _env_int("OTP_RETENTION_DAYS", 7)

    bulk_rate_limit_max: int = _env_int("BULK_RATE_LIMIT_MAX", 10)
    bulk_rate_limit_window_seconds: int = _env_int(
        "BULK_RATE_LIMIT_WINDOW_SECONDS", 60
    )

    dispatch_max_retries: int = _env_int("DISPATCH_MAX_RETRIES", 3)
    dispatch_retry_base_delay_seconds: float = _env_float(
        "DISPATCH_RETRY_BASE_DELAY_SECONDS", 3.0
    )
    dispatch_timeout_seconds: int = _env_int("DISPATCH_TIMEOUT_SECONDS", 10)
    fallback_queue_key: str = os.getenv("FALLBACK_QUEUE_KEY", "email_queue")
    dead_letter_queue_key: str = os.getenv(
        "DEAD_LETTER_QUEUE_KEY", "email_queue:dead_letter"
    )
    fallback_max_requeues: int = _env_int("FALLBACK_MAX_REQUEUES", 5)
    queue_poll_interval_seconds: float = _env_float("QUEUE_POLL_INTERVAL_SECONDS", 1.0)
    queue_error_backoff_seconds: float = _env_float("QUEUE_ERROR_BACKOFF_SECONDS", 5.0)
    start_queue_worker: bool = _env_bool("START_QUEUE_WORKER", True)

    audit_queue_key: str = os.getenv("AUDIT_QUEUE_KEY", "audit:queue")
    audit_drain_batch_size: int = _env_int("AUDIT_DRAIN_BATCH_SIZE", 50)
    template_cache_ttl_seconds: int = _env_int("TEMPLATE_CACHE_TTL_SECONDS", 3600)

    brand_name: str = os.getenv("BRAND_NAME", "Quicrefill")
    support_email: str = os.getenv("SUPPORT_EMAIL", "support@quicrefill.com")
    email_transport: str = os.getenv("EMAIL_TRANSPORT", "gmail").strip().lower()
    email_sender: str = (
        os.getenv("EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = _env_int("SMTP_PORT", 587)
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "")
    smtp_use_tls: bool = _env_bool("SMTP_USE_TLS", True)
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv(
        "GMAIL_CREDENTIALS_FILE", os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    )
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )
    twilio_whatsapp_number: str = os.getenv("TWILIO_WHATSAPP_NUMBER", "")
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+234")


settings = Settings()
