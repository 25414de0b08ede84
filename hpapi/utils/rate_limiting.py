"""Rate limiting utilities for the Health Practice API"""

import hashlib
import logging

from flask import current_app, jsonify, request
from flask_jwt_extended import get_current_user, verify_jwt_in_request
from flask_limiter.util import get_remote_address

from hpapi.config import SETTINGS
from hpapi.utils.permissions import is_admin_or_higher
from hpapi.utils.security_events import log_rate_limit_exceeded

logger = logging.getLogger(__name__)


class RateLimitConfig:
    """Helper class to centralize rate limit configuration."""

    @classmethod
    def _get_config(cls):
        """Get rate limiting config from Flask app config or fallback to SETTINGS"""
        try:
            return current_app.config.get("RATE_LIMITING", {})
        except RuntimeError:
            return SETTINGS.get("RATE_LIMITING", {})

    @classmethod
    def is_enabled(cls):
        return cls._get_config().get("ENABLED", True)

    @classmethod
    def get_storage_uri(cls):
        config = cls._get_config()
        return (
            config.get("STORAGE_URI")
            or SETTINGS.get("REDIS_URL")
            or SETTINGS.get("CELERY_BROKER_URL")
        )

    @classmethod
    def get_default_limits(cls):
        return cls._get_config().get("DEFAULT_LIMITS", ["1000 per hour"])

    @classmethod
    def get_auth_limits(cls):
        return cls._get_config().get("AUTH_LIMITS", ["20 per minute"])

    @classmethod
    def get_password_reset_limits(cls):
        return cls._get_config().get("PASSWORD_RESET_LIMITS", ["3 per hour"])

    @classmethod
    def get_user_creation_limits(cls):
        return cls._get_config().get("USER_CREATION_LIMITS", ["10 per hour"])


def is_rate_limiting_disabled():
    """exempt_when callback: True when rate limiting is switched off."""
    if not RateLimitConfig.is_enabled():
        return True

    from hpapi import limiter

    return not getattr(limiter, "enabled", True)


def _current_admin_or_none():
    try:
        verify_jwt_in_request(optional=True)
        current_user = get_current_user()
    except Exception as e:
        logger.debug(f"Failed to get current user for rate limiting: {e}")
        return None, None
    return current_user, is_admin_or_higher(current_user)


def get_user_id_or_ip():
    """
    Get user ID for authenticated requests, IP address for anonymous requests.
    Returns None if the user should be exempt from rate limiting.
    """
    current_user, is_admin = _current_admin_or_none()
    if current_user:
        if is_admin:
            return None
        return f"user:{current_user.id}"
    return f"ip:{get_remote_address()}"


def get_rate_limit_key_for_auth():
    """
    Key function for authentication endpoints.
    Uses a hash of the submitted email plus the client IP, so the key itself
    never reveals which accounts are being targeted.
    """
    body = request.get_json(silent=True) or {}
    email = str(body.get("email", "")).strip().lower()
    ip = get_remote_address()
    if email:
        email_hash = hashlib.sha256(email.encode()).hexdigest()[:16]
        return f"auth:{email_hash}:{ip}"
    return f"auth:anon:{ip}"


def create_rate_limit_response(retry_after=None):
    """Create a standardized rate limit exceeded response and log the event"""
    current_user, _ = _current_admin_or_none()
    user_id = str(current_user.id) if current_user else None
    endpoint = request.path or request.endpoint

    log_rate_limit_exceeded(limit_type=endpoint or "unknown_endpoint", user_id=user_id)

    response_data = {
        "status": 429,
        "detail": "Rate limit exceeded. Please try again later.",
        "error_code": "RATE_LIMIT_EXCEEDED",
    }

    if retry_after:
        response_data["retry_after"] = retry_after

    response = jsonify(response_data)
    response.status_code = 429

    if retry_after:
        response.headers["Retry-After"] = str(retry_after)

    return response


def rate_limit_error_handler(error):
    """Custom error handler for rate limit exceeded"""
    retry_after = getattr(error, "retry_after", None)
    logger.info(f"Rate limit exceeded: {error}")
    return create_rate_limit_response(retry_after=retry_after)
