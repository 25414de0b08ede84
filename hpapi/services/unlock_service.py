"""UNLOCK SERVICE

Administrative unlocks. Patient, provider and admin accounts are unlocked
through the admin API. Superadmin accounts can only be unlocked by an operator
with shell access through the emergency unlock command, never over HTTP.
"""

import logging

from flask import has_request_context
import rollbar
from sqlalchemy import func, or_

from hpapi import db
from hpapi.errors import NoActionNeeded, NotAllowed, UserNotFound
from hpapi.models.security_audit_event import AuditEventType
from hpapi.models.user import User
from hpapi.services.audit_service import ActorContext, AuditService
from hpapi.utils.clock import utcnow
from hpapi.utils.database import retry_db_operation
from hpapi.utils.permissions import can_unlock_account

logger = logging.getLogger(__name__)


class UnlockService:
    """Unlock Service"""

    @staticmethod
    def emergency_unlock(email, actor, reason):
        """Clear the lock on a superadmin account.

        Only callable outside of a request. The audit record is mandatory: if
        it cannot be written the unlock is rolled back.

        Returns:
            dict: the lock status the account had before the unlock
        """
        if has_request_context():
            raise NotAllowed(
                "Emergency unlock is only available from the administrative "
                "command line"
            )
        if not reason or not reason.strip():
            raise ValueError("A reason is required for an emergency unlock")
        if actor is None or not actor.actor_email:
            raise ValueError("The operator performing the unlock must be named")

        logger.warning(
            f"[SERVICE]: Emergency unlock requested for {email} by "
            f"{actor.actor_email}"
        )
        user = User.query.filter(
            func.lower(User.email) == (email or "").strip().lower(),
            User.role == "superadmin",
        ).first()
        if not user:
            raise UserNotFound(f"No superadmin account with email {email}")

        return UnlockService._unlock(
            user,
            actor,
            reason.strip(),
            AuditEventType.EMERGENCY_UNLOCK,
            required=True,
        )

    @staticmethod
    def unlock_account(user, actor_user, reason=None):
        """Unlock ``user`` on behalf of an authenticated administrator."""
        logger.info(f"[SERVICE]: Unlock requested for user {user.id}")
        if user.role == "superadmin":
            raise NotAllowed(
                "Superadmin accounts can only be unlocked with the emergency "
                "unlock procedure"
            )
        if not can_unlock_account(actor_user, user):
            raise NotAllowed("Insufficient privileges to unlock this account")

        return UnlockService._unlock(
            user,
            ActorContext.from_user(actor_user),
            reason,
            AuditEventType.ACCOUNT_UNLOCKED,
        )

    @staticmethod
    def _unlock(user, actor, reason, event_type, required=False):
        previous = {
            "account_locked": user.account_locked,
            "failed_login_attempts": user.failed_login_attempts,
            "last_failed_login": user.last_failed_login,
            "lock_expires_at": user.lock_expires_at,
        }
        try:
            cleared = User.query.filter(
                User.id == user.id, User.account_locked.is_(True)
            ).update(
                {
                    User.account_locked: False,
                    User.failed_login_attempts: 0,
                    User.last_failed_login: None,
                    User.lock_expires_at: None,
                },
                synchronize_session=False,
            )
            if cleared == 0:
                db.session.rollback()
                raise NoActionNeeded("Account is not locked. No action needed.")

            AuditService.record(
                event_type,
                user=user,
                actor=actor,
                reason=reason,
                details={"previous": previous},
                required=required,
            )
            db.session.commit()
        except NoActionNeeded:
            raise
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error unlocking user {user.id}: {error}")
            rollbar.report_exc_info()
            raise

        # Bulk update bypassed the identity map
        db.session.refresh(user)
        logger.info(f"[SERVICE]: User {user.id} unlocked ({event_type})")
        return {
            key: value.isoformat() if hasattr(value, "isoformat") else value
            for key, value in previous.items()
        }

    @staticmethod
    @retry_db_operation(max_retries=3)
    def list_locked_accounts(include_expired=False, now=None):
        """Accounts whose lock flag is set, soonest expiry first.

        Locks are lifted lazily, so a flagged account may already be past its
        expiry. Those are left out unless ``include_expired`` is set.
        """
        logger.info("[SERVICE]: Listing locked accounts")
        now = now or utcnow()
        query = User.query.filter(User.account_locked.is_(True))
        if not include_expired:
            query = query.filter(
                or_(User.lock_expires_at.is_(None), User.lock_expires_at > now)
            )
        return query.order_by(User.lock_expires_at.asc(), User.email.asc()).all()
