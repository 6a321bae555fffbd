import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    public_base_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    jwt_secret: str
    jwt_algorithm: str
    access_token_ttl_minutes: int

    mail_backend: str
    mail_server: str
    mail_port: int
    mail_use_tls: bool
    mail_username: str
    mail_password: str
    mail_from: str

    otp_ttl_minutes: int
    otp_max_attempts: int

    stripe_secret_key: str
    stripe_webhook_secret: str
    payment_currency: str

    csrf_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///marketplace.db"),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:5000"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        jwt_secret=_getenv("JWT_SECRET", "change-me"),
        jwt_algorithm=_getenv("JWT_ALGORITHM", "HS256"),
        access_token_ttl_minutes=_getenv_int("ACCESS_TOKEN_TTL_MINUTES", 60 * 24),
        mail_backend=_getenv("MAIL_BACKEND", "console"),
        mail_server=_getenv("MAIL_SERVER", "localhost"),
        mail_port=_getenv_int("MAIL_PORT", 587),
        mail_use_tls=_getenv_bool("MAIL_USE_TLS", True),
        mail_username=_getenv("MAIL_USERNAME", ""),
        mail_password=_getenv("MAIL_PASSWORD", ""),
        mail_from=_getenv("MAIL_FROM", "no-reply@marketplace.local"),
        otp_ttl_minutes=_getenv_int("OTP_TTL_MINUTES", 10),
        otp_max_attempts=_getenv_int("OTP_MAX_ATTEMPTS", 5),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        payment_currency=_getenv("PAYMENT_CURRENCY", "usd").lower(),
        # Form tests post without a token; every other env keeps the guard on.
        csrf_enabled=_getenv_bool("CSRF_ENABLED", env != "test"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "PUBLIC_BASE_URL": s.public_base_url.rstrip("/"),
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "JWT_SECRET": s.jwt_secret,
        "JWT_ALGORITHM": s.jwt_algorithm,
        "ACCESS_TOKEN_TTL_MINUTES": s.access_token_ttl_minutes,
        "MAIL_BACKEND": s.mail_backend,
        "MAIL_SERVER": s.mail_server,
        "MAIL_PORT": s.mail_port,
        "MAIL_USE_TLS": s.mail_use_tls,
        "MAIL_USERNAME": s.mail_username,
        "MAIL_PASSWORD": s.mail_password,
        "MAIL_FROM": s.mail_from,
        "OTP_TTL_MINUTES": s.otp_ttl_minutes,
        "OTP_MAX_ATTEMPTS": s.otp_max_attempts,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "PAYMENT_CURRENCY": s.payment_currency,
        "CSRF_ENABLED": s.csrf_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
