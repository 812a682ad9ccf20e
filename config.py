"""
Runtime settings for the storefront API.

Values are read from the environment once; every module gets them through
``get_settings()`` so tests can swap them out.
"""
import logging
import os
from functools import lru_cache
from typing import Optional

import structlog
from pydantic import BaseModel


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"

    secret_key: str = "dev-secret-key-change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    cookie_secure: bool = False

    client_url: str = "http://localhost:5173"

    stripe_secret_key: Optional[str] = None
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None

    use_redis: bool = False
    redis_url: Optional[str] = None

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_disabled: bool = False
    email_sender_name: str = "Storefront"
    order_notification_email: Optional[str] = None
    email_max_attempts: int = 3

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "storefront"),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-me"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15)),
            refresh_token_expire_days=int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7)),
            cookie_secure=_env_bool("COOKIE_SECURE"),
            client_url=os.getenv("CLIENT_URL", "http://localhost:5173"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID") or None,
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
            use_redis=_env_bool("USE_REDIS"),
            redis_url=os.getenv("REDIS_URL") or None,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", 587)),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
            email_disabled=_env_bool("EMAIL_DISABLED"),
            email_sender_name=os.getenv("EMAIL_SENDER_NAME", "Storefront"),
            order_notification_email=os.getenv("ORDER_NOTIFICATION_EMAIL") or None,
            email_max_attempts=int(os.getenv("EMAIL_MAX_ATTEMPTS", 3)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format="%(message)s", level=level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )
