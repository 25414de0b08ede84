"""HPAPI ERRORS"""


class Error(Exception):
    def __init__(self, message):
        self.message = message
        super().__init__(message)

    @property
    def serialize(self):
        return {"message": self.message}


class UserNotFound(Error):
    pass


class UserDuplicated(Error):
    pass


class AuthError(Error):
    pass


class InvalidCredentials(AuthError):
    """Unknown email or wrong password."""


class NotAllowed(Error):
    pass


class EmailError(Error):
    pass


class InvalidPasswordPolicy(Error):
    """The proposed password does not satisfy the configured password policy."""


class InvalidResetToken(Error):
    pass


class NoActionNeeded(Error):
    """The requested transition is already in effect. Informational, not fatal."""


class StorageConflict(Error):
    """A concurrent update changed the security record mid-attempt."""


class AuditWriteError(Error):
    """A mandatory audit record could not be written."""


class AccountLocked(AuthError):
    """Raised when a user account is locked due to too many failed login attempts."""

    def __init__(
        self,
        message: str,
        minutes_remaining: int | None = None,
        requires_manual_unlock: bool = False,
    ):
        super().__init__(message)
        self.minutes_remaining = minutes_remaining
        self.requires_manual_unlock = requires_manual_unlock

    @property
    def serialize(self):
        return {
            "message": self.message,
            "error_code": "account_locked",
            "minutes_remaining": self.minutes_remaining,
            "requires_manual_unlock": self.requires_manual_unlock,
        }


class AccessRedirect(Error):
    """Base for access guard outcomes that send the user somewhere else."""

    error_code = "access_denied"
    status = 403

    def __init__(self, message, redirect_to):
        super().__init__(message)
        self.redirect_to = redirect_to

    @property
    def serialize(self):
        return {
            "message": self.message,
            "error_code": self.error_code,
            "redirect_to": self.redirect_to,
        }


class AuthRequired(AccessRedirect):
    error_code = "auth_required"
    status = 401


class ChangePasswordRequired(AccessRedirect):
    error_code = "change_password_required"


class MfaSetupRequired(AccessRedirect):
    error_code = "mfa_setup_required"


class RoleForbidden(AccessRedirect):
    error_code = "role_forbidden"
