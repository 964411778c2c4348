import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_dir: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_prefix: str

    mail_backend: str
    mail_from: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str

    otp_ttl_seconds: int
    otp_cooldown_seconds: int
    otp_max_attempts: int
    grant_ttl_seconds: int
    max_document_bytes: int
    locale_fallback: tuple[str, ...]


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    locales = tuple(p.strip() for p in _getenv("LOCALE_FALLBACK", "fr,en,gasy").split(",") if p.strip())
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///studio.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_dir=_getenv("STORAGE_DIR", "storage"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_prefix=_getenv("S3_PREFIX", "").strip("/"),
        mail_backend=_getenv("MAIL_BACKEND", "log"),
        mail_from=_getenv("MAIL_FROM", "no-reply@mistery.local"),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getint("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        otp_ttl_seconds=_getint("OTP_TTL_SECONDS", 600),
        otp_cooldown_seconds=_getint("OTP_COOLDOWN_SECONDS", 60),
        otp_max_attempts=_getint("OTP_MAX_ATTEMPTS", 5),
        grant_ttl_seconds=_getint("GRANT_TTL_SECONDS", 900),
        max_document_bytes=_getint("MAX_DOCUMENT_BYTES", 5 * 1024 * 1024),
        locale_fallback=locales or ("fr",),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    csrf_raw = _getenv("CSRF_ENABLED")
    csrf_enabled = (csrf_raw.lower() in ("1", "true", "yes")) if csrf_raw else s.env != "test"
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_DIR": s.storage_dir,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_PREFIX": s.s3_prefix,
        "MAIL_BACKEND": s.mail_backend,
        "MAIL_FROM": s.mail_from,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "OTP_TTL_SECONDS": s.otp_ttl_seconds,
        "OTP_COOLDOWN_SECONDS": s.otp_cooldown_seconds,
        "OTP_MAX_ATTEMPTS": s.otp_max_attempts,
        "GRANT_TTL_SECONDS": s.grant_ttl_seconds,
        "MAX_DOCUMENT_BYTES": s.max_document_bytes,
        "LOCALE_FALLBACK": s.locale_fallback,
        "CSRF_ENABLED": csrf_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # three base64 documents per KYC submission
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
