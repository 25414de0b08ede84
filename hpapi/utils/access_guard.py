"""Route access guard.

Decides whether a session may reach a protected route and, when it may not,
where the UI has to send the user instead. The checks run in a fixed order:
authentication, forced or expired password change, MFA setup, then role.
"""

from dataclasses import dataclass
from functools import wraps
import logging

from flask import jsonify
from flask_jwt_extended import get_current_user, verify_jwt_in_request

from hpapi.config import SETTINGS
from hpapi.errors import (
    AuthRequired,
    ChangePasswordRequired,
    MfaSetupRequired,
    RoleForbidden,
)
from hpapi.models.security_audit_event import AuditEventType
from hpapi.services.audit_service import ActorContext, AuditService
from hpapi.validators import PasswordPolicy

logger = logging.getLogger(__name__)


class AccessReason:
    ALLOWED = "allowed"
    AUTH_REQUIRED = "auth_required"
    CHANGE_PASSWORD_REQUIRED = "change_password_required"
    MFA_SETUP_REQUIRED = "mfa_setup_required"
    ROLE_FORBIDDEN = "role_forbidden"


_ERRORS = {
    AccessReason.AUTH_REQUIRED: (AuthRequired, "Authentication required"),
    AccessReason.CHANGE_PASSWORD_REQUIRED: (
        ChangePasswordRequired,
        "You must change your password before continuing",
    ),
    AccessReason.MFA_SETUP_REQUIRED: (
        MfaSetupRequired,
        "Multi-factor authentication must be set up before continuing",
    ),
    AccessReason.ROLE_FORBIDDEN: (
        RoleForbidden,
        "You do not have permission to access this resource",
    ),
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = AccessReason.ALLOWED
    redirect_to: str | None = None

    def as_error(self):
        """The AccessRedirect error for a denial, None when allowed."""
        if self.allowed:
            return None
        error_class, message = _ERRORS[self.reason]
        return error_class(message, self.redirect_to)

    def serialize(self):
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "redirect_to": self.redirect_to,
        }


def _route(name):
    return SETTINGS.get("ACCESS_ROUTES", {}).get(name)


def landing_route(role):
    """Where a user of ``role`` lands after login."""
    return SETTINGS.get("ROLE_LANDING_ROUTES", {}).get(role, _route("LOGIN"))


def evaluate_access(user, allowed_roles=None):
    """Decide whether ``user`` may reach a route restricted to ``allowed_roles``.

    ``allowed_roles`` of None or empty means any authenticated user. A role
    denial sends the user to their own landing page and is audited.
    """
    if user is None:
        return AccessDecision(False, AccessReason.AUTH_REQUIRED, _route("LOGIN"))

    if user.change_password_required or PasswordPolicy.from_settings().expired(
        user.password_last_changed
    ):
        return AccessDecision(
            False,
            AccessReason.CHANGE_PASSWORD_REQUIRED,
            _route("CHANGE_PASSWORD"),
        )

    if user.mfa_required and not user.mfa_enabled:
        return AccessDecision(
            False, AccessReason.MFA_SETUP_REQUIRED, _route("MFA_SETUP")
        )

    if allowed_roles and user.role not in allowed_roles:
        logger.warning(
            f"[AUTH]: User {user.id} with role {user.role} denied access to a "
            f"route for {', '.join(allowed_roles)}"
        )
        AuditService.record(
            AuditEventType.ACCESS_DENIED,
            user=user,
            actor=ActorContext.from_user(user, source="self"),
            details={"role": user.role, "allowed_roles": list(allowed_roles)},
            commit=True,
        )
        return AccessDecision(
            False, AccessReason.ROLE_FORBIDDEN, landing_route(user.role)
        )

    return AccessDecision(True)


def denial_response(denial):
    """JSON response for an AccessRedirect error."""
    return jsonify(
        {"status": denial.status, "detail": denial.message} | denial.serialize
    ), denial.status


def protected(roles=None):
    """Guard a view with ``evaluate_access``.

    Denials answer with the status of the matching AccessRedirect error and
    a ``redirect_to`` the UI should follow.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request(optional=True)
            denial = evaluate_access(get_current_user(), roles).as_error()
            if denial is not None:
                return denial_response(denial)
            return func(*args, **kwargs)

        return wrapper

    return decorator
