"""Admin routes for account lockout, password and audit management."""

import logging

from flask import jsonify, request
from flask_jwt_extended import current_user

from hpapi.errors import NoActionNeeded, NotAllowed, UserNotFound
from hpapi.routes.api import admin_endpoints, error
from hpapi.services import (
    ActorContext,
    AuditService,
    LockoutService,
    PasswordService,
    UnlockService,
    UserService,
)
from hpapi.utils.access_guard import protected
from hpapi.utils.permissions import ADMIN_ROLES, can_force_password_change
from hpapi.validators import sanitize_text

logger = logging.getLogger()


def _reason():
    body = request.get_json(silent=True) or {}
    return sanitize_text(body.get("reason"), max_length=500)


@admin_endpoints.route("/accounts/locked", strict_slashes=False, methods=["GET"])
@protected(roles=ADMIN_ROLES)
def get_locked_accounts():
    """
    List accounts that are currently locked.

    **Access**: Restricted to users with role `admin` or `superadmin`

    **Query Parameters**:
    - `include_expired`: "true" to also list accounts whose lock has expired
      but has not yet been lifted by a login attempt

    **Response Schema**:
    ```json
    {
      "data": [
        {
          "id": "a3c1...",
          "email": "user@example.com",
          "role": "patient",
          "lock_status": {
            "account_locked": true,
            "failed_login_attempts": 5,
            "max_failed_attempts": 5,
            "lock_expires_at": "2025-01-15T10:45:00",
            "minutes_remaining": 12,
            "requires_manual_unlock": false
          }
        }
      ],
      "total": 1
    }
    ```
    """
    logger.info("[ROUTER]: Listing locked accounts")
    include_expired = request.args.get("include_expired", "false").lower() == "true"
    try:
        users = UnlockService.list_locked_accounts(include_expired=include_expired)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")

    data = [
        {**user.serialize(), "lock_status": LockoutService.lock_status(user)}
        for user in users
    ]
    return jsonify(data=data, total=len(data)), 200


@admin_endpoints.route(
    "/accounts/<user>/unlock", strict_slashes=False, methods=["POST"]
)
@protected(roles=ADMIN_ROLES)
def unlock_account(user):
    """
    Clear the lock on an account.

    **Access**: `admin` may unlock patient and provider accounts; only
      `superadmin` may unlock admin accounts. Superadmin accounts cannot be
      unlocked here: they require the emergency unlock command.

    **Path Parameters**:
    - `user`: User id or email

    **Request Schema** (optional):
    ```json
    {"reason": "Verified identity by phone"}
    ```

    **Error Responses**:
    - `400 Bad Request`: The account is not locked
    - `403 Forbidden`: Insufficient privileges for this account
    - `404 Not Found`: User does not exist
    """
    logger.info(f"[ROUTER]: Unlocking account {user}")
    try:
        reason = _reason()
        target = UserService.get_user(user)
        previous = UnlockService.unlock_account(target, current_user, reason=reason)
    except ValueError as e:
        return error(status=400, detail=str(e))
    except UserNotFound as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=404, detail=e.message)
    except NotAllowed as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=403, detail=e.message)
    except NoActionNeeded as e:
        return error(status=400, detail=e.message)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")

    return jsonify(
        data={
            "user": target.serialize(include=["security"]),
            "previous": previous,
        }
    ), 200


@admin_endpoints.route(
    "/users/<user>/force-password-change", strict_slashes=False, methods=["POST"]
)
@protected(roles=ADMIN_ROLES)
def force_password_change(user):
    """
    Require a user to change their password at next login.

    **Access**: `admin` for any account below superadmin, `superadmin` for all

    **Error Responses**:
    - `403 Forbidden`: Insufficient privileges for this account
    - `404 Not Found`: User does not exist
    """
    logger.info(f"[ROUTER]: Forcing password change for {user}")
    try:
        reason = _reason()
        target = UserService.get_user(user)
        if not can_force_password_change(current_user, target):
            return error(status=403, detail="Forbidden")
        target = PasswordService.force_change_required(
            target, ActorContext.from_user(current_user), reason=reason
        )
    except ValueError as e:
        return error(status=400, detail=str(e))
    except UserNotFound as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=404, detail=e.message)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(data=target.serialize(include=["security"])), 200


@admin_endpoints.route(
    "/users/<user>/temporary-password", strict_slashes=False, methods=["POST"]
)
@protected(roles=ADMIN_ROLES)
def issue_temporary_password(user):
    """
    Issue a temporary password for a patient account.

    The password is emailed to the patient and also returned here. The
    patient must choose a new password at next login, and any lock on the
    account is cleared.

    **Response Schema**:
    ```json
    {
      "data": {
        "user": {"id": "a3c1...", "email": "patient@example.com"},
        "temporary_password": "Xy7#..."
      }
    }
    ```

    **Error Responses**:
    - `403 Forbidden`: The account is not a patient account
    - `404 Not Found`: User does not exist
    """
    logger.info(f"[ROUTER]: Issuing temporary password for {user}")
    try:
        reason = _reason()
        target = UserService.get_user(user)
        password = PasswordService.issue_temporary_password(
            target, current_user, reason=reason
        )
    except ValueError as e:
        return error(status=400, detail=str(e))
    except UserNotFound as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=404, detail=e.message)
    except NotAllowed as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=403, detail=e.message)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(
        data={
            "user": target.serialize(include=["security"]),
            "temporary_password": password,
        }
    ), 200


@admin_endpoints.route("/security-events", strict_slashes=False, methods=["GET"])
@protected(roles=ADMIN_ROLES)
def get_security_events():
    """
    Browse the security audit trail, newest first.

    **Query Parameters**:
    - `user_id`: Only events about this user
    - `event_type`: Only events of this type, e.g. `ACCOUNT_LOCKED`
    - `page`: Page number (default 1)
    - `per_page`: Items per page (1-500, default 50)
    """
    logger.info("[ROUTER]: Getting security events")
    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", 50))
        events, total = AuditService.list_events(
            user_id=request.args.get("user_id"),
            event_type=request.args.get("event_type"),
            page=page,
            per_page=per_page,
        )
    except ValueError as e:
        return error(status=400, detail=str(e))
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(
        data=[event.serialize() for event in events],
        page=page,
        per_page=per_page,
        total=total,
    ), 200
