"""Authentication routes for the Health Practice API."""

import logging

from flask import jsonify, request
from flask_jwt_extended import (
    create_access_token,
    current_user,
    get_current_user,
    jwt_required,
    verify_jwt_in_request,
)

from hpapi import limiter
from hpapi.config import SETTINGS
from hpapi.errors import (
    AccountLocked,
    InvalidCredentials,
    InvalidPasswordPolicy,
    InvalidResetToken,
    NotAllowed,
    StorageConflict,
    UserDuplicated,
)
from hpapi.routes.api import auth_endpoints, error
from hpapi.services import PasswordService, RefreshTokenService, UserService
from hpapi.utils.access_guard import denial_response, evaluate_access, landing_route
from hpapi.utils.rate_limiting import (
    RateLimitConfig,
    get_rate_limit_key_for_auth,
    get_user_id_or_ip,
    is_rate_limiting_disabled,
)
from hpapi.validators import (
    validate_email,
    validate_password_change,
    validate_registration,
)

logger = logging.getLogger()

UNIFORM_LOGIN_FAILURE = "Invalid email or password"


def _access_token_seconds():
    return int(SETTINGS.get("JWT_ACCESS_TOKEN_EXPIRES").total_seconds())


def _session_payload(user):
    access_token = create_access_token(identity=str(user.id))
    refresh_token = RefreshTokenService.create_refresh_token(user.id)
    decision = evaluate_access(user)
    return {
        "user": user.serialize(),
        "access_token": access_token,
        "refresh_token": refresh_token.token,
        "expires_in": _access_token_seconds(),
        "redirect_to": decision.redirect_to
        if not decision.allowed
        else landing_route(user.role),
    }


@auth_endpoints.route("/login", strict_slashes=False, methods=["POST"])
@limiter.limit(
    lambda: ";".join(RateLimitConfig.get_auth_limits()),
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
def login():
    """
    Authenticate with email and password.

    **Rate Limited**: Subject to authentication rate limits, keyed on the
      submitted email and client IP

    **Request Schema**:
    ```json
    {
      "email": "user@example.com",
      "password": "Secret-passw0rd"
    }
    ```

    **Success Response Schema**:
    ```json
    {
      "data": {
        "user": {
          "id": "a3c1...",
          "email": "user@example.com",
          "role": "patient",
          "change_password_required": false,
          "mfa_required": false,
          "mfa_enabled": false
        },
        "access_token": "eyJ...",
        "refresh_token": "x1Y...",
        "expires_in": 3600,
        "redirect_to": "/dashboard"
      }
    }
    ```

    `redirect_to` is the first place the UI must send the user: the forced
    password change or MFA setup page when one is pending, otherwise the
    landing page for the user's role.

    **Lockout**:
    - Every failed attempt counts against the account
    - After `MAX_FAILED_ATTEMPTS` consecutive failures the account locks for
      `LOCKOUT_DURATION_MINUTES` (or until an administrator unlocks it)
    - While locked, even the correct password is rejected

    **Error Responses**:
    - `400 Bad Request`: Email or password missing
    - `401 Unauthorized`: Unknown email, wrong password or locked account. The
      response is the same in all three cases unless lock status exposure is
      enabled, in which case a locked account answers with
      `error_code: "account_locked"` and `minutes_remaining`
    - `429 Too Many Requests`: Rate limit exceeded
    - `503 Service Unavailable`: The account record was busy, retry shortly
    """
    logger.info("[ROUTER]: Login attempt")
    body = request.get_json(silent=True) or {}
    email = body.get("email")
    password = body.get("password")

    if not email or not password:
        return error(status=400, detail="Email and password are required")

    try:
        user = UserService.authenticate_user(email, password)
    except AccountLocked as e:
        if SETTINGS.get("LOCKOUT", {}).get("EXPOSE_LOCK_STATUS"):
            details = {k: v for k, v in e.serialize.items() if k != "message"}
            return error(status=401, detail=e.message, **details)
        return error(status=401, detail=UNIFORM_LOGIN_FAILURE)
    except InvalidCredentials:
        return error(status=401, detail=UNIFORM_LOGIN_FAILURE)
    except StorageConflict as e:
        logger.error("[ROUTER]: " + e.message)
        return error(
            status=503, detail="Service temporarily unavailable, please try again"
        )
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")

    return jsonify(data=_session_payload(user)), 200


@auth_endpoints.route("/logout", strict_slashes=False, methods=["POST"])
@jwt_required()
def logout():
    """
    End the current session.

    Revokes the refresh token given in the body, or every refresh token of
    the user when none is given. The account security record is untouched.
    """
    logger.info("[ROUTER]: User logout")
    body = request.get_json(silent=True) or {}
    refresh_token_string = body.get("refresh_token")

    try:
        if refresh_token_string:
            RefreshTokenService.revoke_refresh_token(
                refresh_token_string, user_id=current_user.id
            )
        else:
            RefreshTokenService.revoke_all_user_tokens(current_user.id)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")

    return jsonify(data={"message": "Successfully logged out"}), 200


@auth_endpoints.route("/me", strict_slashes=False, methods=["GET"])
@jwt_required()
def get_me():
    """
    Return the authenticated user.

    **Success Response Schema**:
    ```json
    {
      "data": {
        "id": "a3c1...",
        "email": "user@example.com",
        "role": "provider",
        "created_at": "2025-01-15T10:30:00",
        "updated_at": "2025-01-15T10:30:00",
        "last_login_at": "2025-01-16T08:02:11",
        "change_password_required": true,
        "mfa_required": false,
        "mfa_enabled": false
      }
    }
    ```

    **Error Responses**:
    - `401 Unauthorized`: Missing, invalid or expired access token
    """
    logger.info("[ROUTER]: Getting current user")
    return jsonify(data=current_user.serialize()), 200


@auth_endpoints.route("/register", strict_slashes=False, methods=["POST"])
@limiter.limit(
    lambda: ";".join(RateLimitConfig.get_user_creation_limits()) or "10 per hour",
    key_func=get_user_id_or_ip,
    exempt_when=is_rate_limiting_disabled,
)
@validate_registration
def register():
    """
    Create a new account.

    **Rate Limited**: Subject to user creation rate limits (configurable)
    **Access**: Public for `patient` and `provider` accounts. Creating `admin`
      or `superadmin` accounts requires a SUPERADMIN access token

    **Request Schema**:
    ```json
    {
      "email": "user@example.com",
      "password": "Secret-passw0rd",
      "role": "patient"
    }
    ```

    **Request Fields**:
    - `email`: Email address (required, unique, case-insensitive)
    - `password`: Password meeting the password policy (required)
    - `role`: "patient", "provider", "admin" or "superadmin" (default: "patient")

    **Account Defaults**:
    - Unlocked, zero failed attempts
    - Every role except patient must change its password at first login
    - Roles listed in `MFA_REQUIRED_ROLES` must set up MFA before continuing

    **Error Responses**:
    - `400 Bad Request`: Missing fields, invalid email or role, email exists
    - `401 Unauthorized`: Staff role requested without an access token
    - `403 Forbidden`: Insufficient privileges to create the requested role, or
      the superadmin still has a pending password change or MFA setup (the
      response carries `error_code` and `redirect_to`)
    - `422 Unprocessable Entity`: Password does not meet the policy
    - `429 Too Many Requests`: Rate limit exceeded
    - `500 Internal Server Error`: User creation failed
    """
    logger.info("[ROUTER]: Registering user")
    body = request.get_json(silent=True)

    verify_jwt_in_request(optional=True)
    creator = get_current_user()

    # Staff provisioning is a protected action for superadmins
    role = body.get("role") or "patient"
    if role in SETTINGS.get("ROLES", []) and role not in SETTINGS.get(
        "PUBLIC_ROLES", ["patient", "provider"]
    ):
        denial = evaluate_access(creator, ["superadmin"]).as_error()
        if denial is not None:
            logger.error(f"[ROUTER]: Creation of {role} account denied: {denial}")
            return denial_response(denial)

    try:
        user = UserService.create_user(body, creator=creator)
    except NotAllowed as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=403, detail=e.message)
    except UserDuplicated as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=400, detail=e.message)
    except InvalidPasswordPolicy as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=422, detail=e.message)
    except ValueError as e:
        return error(status=400, detail=str(e))
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(data=user.serialize()), 201


@auth_endpoints.route("/refresh", strict_slashes=False, methods=["POST"])
@limiter.limit(
    lambda: ";".join(RateLimitConfig.get_auth_limits()),
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
def refresh_token():
    """Exchange a refresh token for a new access token."""
    logger.info("[ROUTER]: Attempting token refresh")
    body = request.get_json(silent=True) or {}
    refresh_token_string = body.get("refresh_token")

    if not refresh_token_string:
        return error(status=400, detail="Refresh token is required")

    access_token, user = RefreshTokenService.refresh_access_token(refresh_token_string)

    if not access_token:
        return error(status=401, detail="Invalid or expired refresh token")

    return jsonify(
        data={
            "access_token": access_token,
            "user_id": str(user.id),
            "expires_in": _access_token_seconds(),
        }
    ), 200


@auth_endpoints.route("/change-password", strict_slashes=False, methods=["POST"])
@jwt_required()
@validate_password_change
def change_password():
    """
    Change the current user's password.

    Reachable while a forced password change is pending, and completing it
    clears the flag. All existing sessions are revoked, and a fresh refresh
    token is returned for this one.

    **Request Schema**:
    ```json
    {
      "current_password": "Old-passw0rd!",
      "new_password": "New-passw0rd!",
      "repeat_password": "New-passw0rd!"
    }
    ```

    **Error Responses**:
    - `400 Bad Request`: Missing fields or passwords do not match
    - `401 Unauthorized`: Access token missing or current password incorrect
    - `422 Unprocessable Entity`: New password does not meet the policy
    """
    logger.info("[ROUTER]: Changing password")
    body = request.get_json(silent=True)

    try:
        user = PasswordService.change_password(
            current_user, body.get("current_password"), body.get("new_password")
        )
    except InvalidCredentials as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=401, detail=e.message)
    except InvalidPasswordPolicy as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=422, detail=e.message)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(data=_session_payload(user)), 200


@auth_endpoints.route("/forgot-password", strict_slashes=False, methods=["POST"])
@limiter.limit(
    lambda: ";".join(RateLimitConfig.get_password_reset_limits()),
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
def forgot_password():
    """
    Request a password reset link.

    Always answers 200 with the same message, whether or not the email
    belongs to an account. Staff accounts (admin, superadmin) never receive a
    reset link.
    """
    logger.info("[ROUTER]: Password reset requested")
    body = request.get_json(silent=True) or {}
    try:
        email = validate_email(body.get("email"))
    except ValueError as e:
        return error(status=400, detail=str(e))

    try:
        PasswordService.request_password_reset(email)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")

    return jsonify(
        data={
            "message": "If an account exists for this email, a password reset "
            "link has been sent."
        }
    ), 200


@auth_endpoints.route("/reset-password", strict_slashes=False, methods=["POST"])
@limiter.limit(
    lambda: ";".join(RateLimitConfig.get_password_reset_limits()),
    key_func=get_user_id_or_ip,
    exempt_when=is_rate_limiting_disabled,
)
def reset_password():
    """
    Set a new password with a reset token.

    **Request Schema**:
    ```json
    {
      "token": "reset-token-from-email",
      "password": "New-passw0rd!"
    }
    ```

    The token is single use and expires after
    `PASSWORD_RESET_TOKEN_EXPIRY_HOURS`. A successful reset also clears any
    account lock.

    **Error Responses**:
    - `400 Bad Request`: Missing fields, or invalid, used or expired token
    - `422 Unprocessable Entity`: Password does not meet the policy
    """
    logger.info("[ROUTER]: Resetting password with token")
    body = request.get_json(silent=True) or {}
    token = body.get("token")
    password = body.get("password")
    if not token or not password:
        return error(status=400, detail="token and password are required")

    try:
        user = PasswordService.reset_password_with_token(token, password)
    except InvalidResetToken as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=400, detail=e.message)
    except InvalidPasswordPolicy as e:
        logger.error("[ROUTER]: " + e.message)
        return error(status=422, detail=e.message)
    except Exception as e:
        logger.error("[ROUTER]: " + str(e))
        return error(status=500, detail="Generic Error")
    return jsonify(data=user.serialize()), 200


@auth_endpoints.route("/access", strict_slashes=False, methods=["POST"])
def check_access():
    """
    Ask whether the current session may open a protected page.

    **Request Schema**:
    ```json
    {"roles": ["admin", "superadmin"]}
    ```

    `roles` is the allowed role set of the page; omit it for pages open to
    any signed-in user.

    **Success Response Schema**:
    ```json
    {
      "data": {
        "allowed": false,
        "reason": "change_password_required",
        "redirect_to": "/auth/change-password"
      }
    }
    ```

    `reason` is one of `allowed`, `auth_required`, `change_password_required`,
    `mfa_setup_required` or `role_forbidden`. The checks run in that order, so
    a pending password change or MFA setup always wins over the role check.
    """
    logger.info("[ROUTER]: Checking route access")
    body = request.get_json(silent=True) or {}
    roles = body.get("roles") or None
    if roles is not None and not isinstance(roles, list):
        return error(status=400, detail="roles must be a list")

    verify_jwt_in_request(optional=True)
    decision = evaluate_access(get_current_user(), roles)
    return jsonify(data=decision.serialize()), 200
