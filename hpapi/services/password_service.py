"""PASSWORD SERVICE"""

import logging

import rollbar
from sqlalchemy import func

from hpapi import db
from hpapi.errors import (
    EmailError,
    InvalidCredentials,
    InvalidPasswordPolicy,
    InvalidResetToken,
    NotAllowed,
)
from hpapi.models.password_history import PasswordHistory
from hpapi.models.password_reset_token import PasswordResetToken
from hpapi.models.security_audit_event import AuditEventType
from hpapi.models.user import User
from hpapi.services.audit_service import ActorContext, AuditService
from hpapi.services.email_service import EmailService
from hpapi.services.refresh_token_service import RefreshTokenService
from hpapi.utils.clock import utcnow
from hpapi.utils.permissions import (
    allows_self_service_reset,
    can_issue_temporary_password,
)
from hpapi.validators import PasswordPolicy

logger = logging.getLogger(__name__)


class PasswordService:
    """Password lifecycle: set, force, change, reset and temporary passwords"""

    @staticmethod
    def check_policy(password, policy=None):
        if not password:
            raise InvalidPasswordPolicy("Password is required")
        problems = (policy or PasswordPolicy.from_settings()).violations(password)
        if problems:
            raise InvalidPasswordPolicy("; ".join(problems))

    @staticmethod
    def check_reuse(user, password, policy):
        """Refuse the current password and the last replaced ones."""
        if not policy.history_size:
            return
        if user.check_password(password) or PasswordHistory.matches(
            user.id, password, policy.history_size
        ):
            raise InvalidPasswordPolicy(
                "Password must differ from the current password and the last "
                f"{policy.history_size} replaced ones"
            )

    @staticmethod
    def set_password(
        user,
        new_password,
        require_change_on_next=False,
        actor=None,
        reason=None,
        event_type=AuditEventType.PASSWORD_SET,
        policy=None,
    ):
        """Replace the password of ``user``.

        Clears any lockout, revokes outstanding reset tokens and refresh
        tokens, and records the change, all in one transaction.
        """
        logger.info(f"[SERVICE]: Setting password for user {user.email}")
        policy = policy or PasswordPolicy.from_settings()
        PasswordService.check_policy(new_password, policy)
        PasswordService.check_reuse(user, new_password, policy)

        was_locked = user.account_locked
        replaced = user.password
        user.password = user.set_password(new_password)
        user.change_password_required = require_change_on_next
        user.clear_lockout()
        user.password_last_changed = utcnow()
        try:
            logger.info("[DB]: ADD")
            db.session.add(user)
            PasswordHistory.remember(user.id, replaced, policy.history_size)
            PasswordResetToken.invalidate_user_tokens(user.id)
            revoked = RefreshTokenService.revoke_all_user_tokens(user.id, commit=False)
            AuditService.record(
                event_type,
                user=user,
                actor=actor,
                reason=reason,
                details={
                    "require_change_on_next": require_change_on_next,
                    "was_locked": was_locked,
                    "sessions_revoked": revoked,
                },
            )
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(
                f"[SERVICE]: Error setting password for {user.email}: {error}"
            )
            rollbar.report_exc_info()
            raise
        logger.info(f"[SERVICE]: Password for user {user.email} set successfully")
        return user

    @staticmethod
    def force_change_required(user, actor, reason=None):
        logger.info(f"[SERVICE]: Forcing password change for user {user.email}")
        user.change_password_required = True
        try:
            logger.info("[DB]: ADD")
            db.session.add(user)
            AuditService.record(
                AuditEventType.FORCE_PASSWORD_CHANGE,
                user=user,
                actor=actor,
                reason=reason,
            )
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            rollbar.report_exc_info()
            raise error
        return user

    @staticmethod
    def change_password(user, current_password, new_password):
        """Self-service change. Satisfies a pending forced change."""
        logger.info(f"[SERVICE]: Changing password for user {user.email}")
        if not user.check_password(current_password):
            raise InvalidCredentials("Invalid current password")
        if current_password == new_password:
            raise InvalidPasswordPolicy(
                "New password must be different from the current password"
            )
        return PasswordService.set_password(
            user,
            new_password,
            require_change_on_next=False,
            actor=ActorContext.from_user(user, source="self"),
            event_type=AuditEventType.PASSWORD_CHANGE,
        )

    @staticmethod
    def request_password_reset(email):
        """Start the self-service reset flow.

        Callers always answer the same way so the response never reveals
        whether ``email`` belongs to an account. Returns the token, or None
        when no email was sent.
        """
        logger.info("[SERVICE]: Password reset requested")
        email = (email or "").strip().lower()
        user = User.query.filter(func.lower(User.email) == email).first()
        if user is None:
            logger.info("[SERVICE]: Password reset requested for unknown email")
            return None

        if not allows_self_service_reset(user):
            logger.warning(
                f"[SERVICE]: Refusing self-service reset for {user.role} account "
                f"{user.id}"
            )
            AuditService.record(
                AuditEventType.PASSWORD_RESET_REQUESTED,
                user=user,
                actor=ActorContext.from_user(user, source="self"),
                details={"refused": True, "reason": "role_excluded"},
                commit=True,
            )
            return None

        token = PasswordResetToken(user_id=user.id)
        try:
            PasswordResetToken.invalidate_user_tokens(user.id)
            logger.info("[DB]: ADD")
            db.session.add(token)
            AuditService.record(
                AuditEventType.PASSWORD_RESET_REQUESTED,
                user=user,
                actor=ActorContext.from_user(user, source="self"),
                details={"expires_at": token.expires_at},
            )
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            rollbar.report_exc_info()
            raise error

        try:
            EmailService.send_password_reset(user, token.token)
        except EmailError as error:
            # Reported but not raised: the response must match the unknown
            # email case
            logger.error(
                f"[SERVICE]: Password reset email to user {user.id} failed: {error}"
            )
            rollbar.report_exc_info()
        return token

    @staticmethod
    def reset_password_with_token(token_string, new_password):
        logger.info("[SERVICE]: Resetting password with token")
        token = PasswordResetToken.get_valid_token(token_string)
        if token is None:
            raise InvalidResetToken("Invalid or expired reset token")

        user = token.user
        if not allows_self_service_reset(user):
            raise InvalidResetToken("Invalid or expired reset token")

        PasswordService.check_policy(new_password)
        token.mark_used()
        return PasswordService.set_password(
            user,
            new_password,
            require_change_on_next=False,
            actor=ActorContext.from_user(user, source="self"),
            event_type=AuditEventType.PASSWORD_RESET,
        )

    @staticmethod
    def issue_temporary_password(user, actor_user, reason=None):
        """Generate a one-off password for a patient account.

        The account must choose a new password at next login. Returns the
        plaintext so the administrator can pass it on.
        """
        logger.info(f"[SERVICE]: Issuing temporary password for user {user.id}")
        if not can_issue_temporary_password(actor_user, user):
            raise NotAllowed("Temporary passwords can only be issued for patients")

        policy = PasswordPolicy.from_settings()
        password = policy.generate(12)
        PasswordService.set_password(
            user,
            password,
            require_change_on_next=True,
            actor=ActorContext.from_user(actor_user),
            reason=reason,
            event_type=AuditEventType.TEMPORARY_PASSWORD_ISSUED,
            policy=policy,
        )

        try:
            EmailService.send_temporary_password(user, password)
        except EmailError as error:
            logger.error(
                f"[SERVICE]: Temporary password email to user {user.id} failed: "
                f"{error}"
            )
            rollbar.report_exc_info()
        return password
