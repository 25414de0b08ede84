"""Security event logging utilities for the Health Practice API"""

import logging
from typing import Any, Optional

from flask import has_request_context, request
from flask_limiter.util import get_remote_address
import rollbar

from hpapi.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Security event types for consistent logging
SECURITY_EVENTS = {
    "LOGIN_SUCCESS": "User login successful",
    "LOGIN_FAILURE": "User login failed",
    "ACCOUNT_LOCKED": "User account locked",
    "ACCOUNT_AUTO_UNLOCKED": "Expired account lock cleared",
    "ACCOUNT_UNLOCKED": "User account unlocked by administrator",
    "EMERGENCY_UNLOCK": "Superadmin account unlocked out of band",
    "ACCOUNT_CREATED": "User account provisioned",
    "PASSWORD_SET": "User password set",
    "PASSWORD_CHANGE": "User password changed",
    "PASSWORD_RESET": "User password reset with token",
    "PASSWORD_RESET_REQUESTED": "Password reset requested",
    "FORCE_PASSWORD_CHANGE": "Password change forced on next login",
    "TEMPORARY_PASSWORD_ISSUED": "Temporary password issued",
    "ACCESS_DENIED": "Protected route access denied",
    "RATE_LIMIT_HIT": "Rate limit exceeded",
    "AUDIT_WRITE_FAILED": "Security audit record could not be written",
}


def request_metadata() -> dict[str, Any]:
    """Client address and user agent of the current request, if there is one."""
    if not has_request_context():
        return {}
    try:
        return {
            "ip_address": get_remote_address(),
            "user_agent": request.headers.get("User-Agent", "Unknown"),
            "endpoint": request.endpoint,
            "method": request.method,
            "path": request.path,
        }
    except RuntimeError as e:
        logger.debug(f"Failed to gather request context: {e}")
        return {}


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    level: str = "warning",
) -> None:
    """
    Centralized security event logging function.

    Args:
        event_type: Type of security event (should be from SECURITY_EVENTS)
        user_id: ID of the user involved (if applicable)
        user_email: Email of the user involved (if applicable)
        details: Additional details about the event
        level: Log level ('info', 'warning', 'error', 'critical')
    """
    if event_type not in SECURITY_EVENTS:
        logger.warning(f"Unknown security event type: {event_type}")

    event_data = {
        "event_type": event_type,
        "event_description": SECURITY_EVENTS.get(event_type, "Unknown security event"),
        "timestamp": utcnow().isoformat(),
        "user_id": user_id,
        "user_email": user_email,
        "details": details or {},
        "request_info": request_metadata(),
    }

    # Filter out None values for cleaner logs
    event_data = {k: v for k, v in event_data.items() if v is not None}

    log_message = f"SECURITY_EVENT: {event_type}"
    if user_id:
        log_message += f" - User: {user_id}"
    if details:
        log_message += f" - Details: {details}"

    getattr(logger, level)(log_message, extra={"security_event": event_data})

    # Send to Rollbar for centralized monitoring
    try:
        rollbar_level = "info" if level == "info" else "warning"
        if level in ("error", "critical"):
            rollbar_level = "error"
        rollbar.report_message(
            message=f"Security Event: {event_type}",
            level=rollbar_level,
            extra_data=event_data,
        )
    except Exception as e:
        logger.error(f"Failed to send security event to Rollbar: {e}")


def log_authentication_event(
    success: bool,
    email: str,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """
    Convenience function for logging authentication attempts that leave no
    durable trace, such as logins for unknown email addresses.

    Args:
        success: Whether authentication was successful
        email: Email address submitted
        reason: Reason for failure (if applicable)
        user_id: ID of the matching user, when there is one
    """
    if success:
        log_security_event(
            "LOGIN_SUCCESS", user_id=user_id, user_email=email, level="info"
        )
    else:
        log_security_event(
            "LOGIN_FAILURE",
            user_id=user_id,
            user_email=email,
            details={"reason": reason},
            level="warning",
        )


def log_rate_limit_exceeded(limit_type: str, user_id: Optional[str] = None) -> None:
    """
    Log rate limit violations.

    Args:
        limit_type: Type of rate limit that was exceeded
        user_id: ID of the user (if authenticated)
    """
    log_security_event(
        "RATE_LIMIT_HIT",
        user_id=user_id,
        details={"limit_type": limit_type},
        level="warning",
    )
