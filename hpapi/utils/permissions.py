"""Permission utility functions"""

from __future__ import annotations

from hpapi.config import SETTINGS

ADMIN_ROLES = ("admin", "superadmin")


def is_superadmin(user):
    """Check if user has superadmin role."""
    if user is None:
        return False
    return user.role == "superadmin"


def is_admin_or_higher(user):
    """Check if user has admin or superadmin role."""
    if user is None:
        return False
    return user.role in ADMIN_ROLES


def can_create_role(actor, role):
    """Check if ``actor`` may provision an account with ``role``.

    Public registration covers the PUBLIC_ROLES (patient, provider). Staff
    accounts can only be created by an authenticated superadmin, and no one
    may create a role the system does not know.
    """
    if role not in SETTINGS.get("ROLES", []):
        return False
    if role in SETTINGS.get("PUBLIC_ROLES", ["patient", "provider"]):
        return True
    return is_superadmin(actor)


def can_unlock_account(actor, target):
    """Check if an admin may clear the lockout on ``target`` through the API.

    Rules:
    - Non-admins cannot unlock anyone
    - ADMIN can unlock patient and provider accounts
    - Only SUPERADMIN can unlock ADMIN accounts
    - SUPERADMIN accounts are never unlocked through the API; they go through
      the emergency unlock command
    """
    if actor is None or target is None:
        return False
    if target.role == "superadmin":
        return False
    if target.role == "admin":
        return is_superadmin(actor)
    return is_admin_or_higher(actor)


def can_force_password_change(actor, target):
    """ADMIN can force rotation on anyone below SUPERADMIN; SUPERADMIN on anyone."""
    if actor is None or target is None:
        return False
    if is_superadmin(actor):
        return True
    return is_admin_or_higher(actor) and target.role != "superadmin"


def can_issue_temporary_password(actor, target):
    """Temporary passwords are only handed out for patient accounts."""
    if actor is None or target is None:
        return False
    return is_admin_or_higher(actor) and target.role == "patient"


def allows_self_service_reset(user):
    excluded = SETTINGS.get("SELF_SERVICE_RESET_EXCLUDED_ROLES", list(ADMIN_ROLES))
    return user is not None and user.role not in excluded
