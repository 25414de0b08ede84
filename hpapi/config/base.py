from datetime import timedelta
import logging
import os

logger = logging.getLogger(__name__)


def _env_list(name, default):
    return [s.strip() for s in (os.getenv(name) or default).split(",") if s.strip()]


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _redis_url():
    return os.getenv("REDIS_URL") or (
        "redis://"
        + (os.getenv("REDIS_PORT_6379_TCP_ADDR") or "localhost")
        + ":"
        + (os.getenv("REDIS_PORT_6379_TCP_PORT") or "6379")
    )


SETTINGS = {
    "logging": {"level": os.getenv("LOG_LEVEL", "INFO")},
    "service": {"port": 3000},
    "environment": {
        "ROLLBAR_SERVER_TOKEN": os.getenv("ROLLBAR_SERVER_TOKEN"),
        "SPARKPOST_API_KEY": os.getenv("SPARKPOST_API_KEY"),
        "CORS_ORIGINS": os.getenv("CORS_ORIGINS"),
    },
    "ROLES": ["patient", "provider", "admin", "superadmin"],
    # Roles anyone may register for without an authenticated superadmin
    "PUBLIC_ROLES": ["patient", "provider"],
    "SQLALCHEMY_DATABASE_URI": os.getenv("DATABASE_URL")
    or (
        "postgresql://"
        + (os.getenv("DATABASE_ENV_POSTGRES_USER") or "postgres")
        + ":"
        + (os.getenv("DATABASE_ENV_POSTGRES_PASSWORD") or "postgres")
        + "@"
        + (os.getenv("DATABASE_PORT_5432_TCP_ADDR") or "localhost")
        + ":"
        + (os.getenv("DATABASE_PORT_5432_TCP_PORT") or "5432")
        + "/"
        + (os.getenv("DATABASE_ENV_POSTGRES_DB") or "postgres")
    ),
    "SECRET_KEY": os.getenv("SECRET_KEY"),
    "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY") or os.getenv("SECRET_KEY"),
    "JWT_ACCESS_TOKEN_EXPIRES": timedelta(seconds=60 * 60 * 1),
    "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=30),
    "JWT_TOKEN_LOCATION": ["headers"],
    # Account lockout policy
    "LOCKOUT": {
        "MAX_FAILED_ATTEMPTS": _env_int("LOCKOUT_MAX_FAILED_ATTEMPTS", 5),
        # 0 locks indefinitely (manual unlock only)
        "LOCKOUT_DURATION_MINUTES": _env_int("LOCKOUT_DURATION_MINUTES", 15),
        # When false, a locked account is indistinguishable from bad credentials
        # to public clients
        "EXPOSE_LOCK_STATUS": os.getenv("LOCKOUT_EXPOSE_STATUS", "false").lower()
        == "true",
        "CONFLICT_RETRIES": 1,
    },
    "PASSWORD_POLICY": {
        "MIN_LENGTH": _env_int("PASSWORD_MIN_LENGTH", 10),
        "MAX_LENGTH": 128,
        "REQUIRE_UPPERCASE": True,
        "REQUIRE_LOWERCASE": True,
        "REQUIRE_DIGIT": True,
        "REQUIRE_SPECIAL": True,
        "SPECIAL_CHARACTERS": "!@#$%^&*()_+~`|}{[]:;?><,./-=",
        # Replaced passwords a change may not reuse
        "HISTORY_SIZE": _env_int("PASSWORD_HISTORY_SIZE", 3),
        # 0 disables expiry
        "MAX_AGE_DAYS": _env_int("PASSWORD_MAX_AGE_DAYS", 90),
    },
    "PASSWORD_RESET_TOKEN_EXPIRY_HOURS": 1,
    "PASSWORD_RESET_URL": os.getenv(
        "PASSWORD_RESET_URL", "http://localhost:3000/auth/reset-password"
    ),
    # Staff accounts may not use the self-service reset flow
    "SELF_SERVICE_RESET_EXCLUDED_ROLES": ["admin", "superadmin"],
    "MFA_REQUIRED_ROLES": _env_list("MFA_REQUIRED_ROLES", ""),
    "ACCESS_ROUTES": {
        "LOGIN": "/auth/login",
        "CHANGE_PASSWORD": "/auth/change-password",
        "MFA_SETUP": "/auth/mfa-setup",
    },
    "ROLE_LANDING_ROUTES": {
        "patient": "/dashboard",
        "provider": "/dashboard",
        "admin": "/admin/dashboard",
        "superadmin": "/admin/dashboard",
    },
    "EMAIL_FROM": os.getenv("EMAIL_FROM", "no-reply@healthpractice.example"),
    "CELERY_BROKER_URL": _redis_url(),
    "CELERY_RESULT_BACKEND": _redis_url(),
    # Celery also expects lowercase versions
    "broker_url": _redis_url(),
    "result_backend": _redis_url(),
    # Note: admin and superadmin users are exempt from all rate limits
    "RATE_LIMITING": {
        "ENABLED": os.getenv("RATE_LIMITING_ENABLED", "true").lower() == "true",
        "STORAGE_URI": os.getenv("RATE_LIMIT_STORAGE_URI") or os.getenv("REDIS_URL"),
        "DEFAULT_LIMITS": _env_list("DEFAULT_LIMITS", "1000 per hour,100 per minute"),
        "AUTH_LIMITS": _env_list("AUTH_LIMITS", "20 per minute,200 per hour"),
        "PASSWORD_RESET_LIMITS": _env_list(
            "PASSWORD_RESET_LIMITS", "10 per hour,3 per minute"
        ),
        "USER_CREATION_LIMITS": _env_list("USER_CREATION_LIMITS", "100 per hour"),
    },
}


if not os.getenv("SPARKPOST_API_KEY"):
    logger.warning(
        "SPARKPOST_API_KEY is not set. Password reset and temporary password "
        "emails will not be delivered."
    )
