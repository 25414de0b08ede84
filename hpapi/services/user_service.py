"""USER SERVICE"""

import logging
from uuid import UUID

import rollbar
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from hpapi import db
from hpapi.config import SETTINGS
from hpapi.errors import (
    AccountLocked,
    InvalidCredentials,
    NotAllowed,
    UserDuplicated,
    UserNotFound,
)
from hpapi.models.security_audit_event import AuditEventType
from hpapi.models.user import User
from hpapi.services.audit_service import ActorContext, AuditService
from hpapi.services.lockout_service import LockoutService, LoginDecision
from hpapi.services.password_service import PasswordService
from hpapi.utils.database import retry_db_operation
from hpapi.utils.permissions import can_create_role
from hpapi.utils.security_events import log_authentication_event

logger = logging.getLogger(__name__)

_dummy_hash = None


def _burn_password_check(password):
    """Spend the cost of one hash check so unknown emails answer in equal time."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = generate_password_hash("not-a-real-password")
    check_password_hash(_dummy_hash, password or "")


class UserService:
    """User Class"""

    @staticmethod
    def create_user(user, creator=None):
        """Provision an account.

        Staff roles need a superadmin ``creator``. Every role other than
        patient starts with a forced password change, and roles listed in
        MFA_REQUIRED_ROLES start with the MFA gate set.
        """
        logger.info("[SERVICE]: Creating user")
        email = (user.get("email") or "").strip().lower()
        password = user.get("password")
        role = user.get("role") or "patient"
        if not email:
            raise ValueError("Email is required")
        if role not in SETTINGS.get("ROLES", []):
            raise ValueError("Invalid role")
        if not can_create_role(creator, role):
            raise NotAllowed(f"Only a superadmin can create {role} accounts")

        PasswordService.check_policy(password)

        if User.query.filter(func.lower(User.email) == email).first():
            raise UserDuplicated(f"User with email {email} already exists")

        new_user = User(
            email=email,
            password=password,
            role=role,
            change_password_required=role != "patient",
            mfa_required=role in SETTINGS.get("MFA_REQUIRED_ROLES", []),
        )
        actor = (
            ActorContext.from_user(creator)
            if creator is not None
            else ActorContext(source="self")
        )
        try:
            logger.info("[DB]: ADD")
            db.session.add(new_user)
            AuditService.record(
                AuditEventType.ACCOUNT_CREATED,
                user=new_user,
                actor=actor,
                details={
                    "change_password_required": new_user.change_password_required,
                    "mfa_required": new_user.mfa_required,
                },
            )
            db.session.commit()
        except IntegrityError as error:
            db.session.rollback()
            raise UserDuplicated(f"User with email {email} already exists") from error
        except Exception as error:
            db.session.rollback()
            rollbar.report_exc_info()
            raise error
        return new_user

    @staticmethod
    @retry_db_operation(max_retries=3)
    def get_user(user_id):
        """Look a user up by id, falling back to email."""
        logger.info(f"[SERVICE]: Getting user {user_id}")
        logger.info("[DB]: QUERY")
        try:
            if isinstance(user_id, UUID):
                user = db.session.get(User, user_id)
            else:
                UUID(str(user_id), version=4)
                user = db.session.get(User, user_id)
        except ValueError:
            user = User.query.filter(
                func.lower(User.email) == str(user_id).strip().lower()
            ).first()
        if not user:
            raise UserNotFound(f"User with id {user_id} does not exist")
        return user

    @staticmethod
    def authenticate_user(email, password, now=None):
        """Check credentials and run the attempt through the lockout policy.

        Raises:
            InvalidCredentials: unknown email or wrong password
            AccountLocked: the account is locked, whatever the password
            StorageConflict: the lockout update kept losing races
        """
        email = (email or "").strip().lower()
        logger.info(f"[AUTH]: Authentication attempt for {email}")
        user = User.query.filter(func.lower(User.email) == email).first()

        if not user:
            _burn_password_check(password)
            logger.warning(f"[AUTH]: Failed login - user not found: {email}")
            log_authentication_event(False, email, "user_not_found")
            raise InvalidCredentials("Invalid email or password")

        outcome = LockoutService.register_attempt(
            user, user.check_password(password), now=now
        )

        if outcome.accepted:
            logger.info(f"[AUTH]: Successful login for user {email}")
            return user

        if outcome.decision == LoginDecision.ACCOUNT_LOCKED:
            logger.warning(f"[AUTH]: Failed login - account locked: {email}")
            raise AccountLocked(
                "Account is locked due to too many failed login attempts",
                minutes_remaining=outcome.minutes_remaining(now),
                requires_manual_unlock=outcome.requires_manual_unlock,
            )

        logger.warning(f"[AUTH]: Failed login - invalid password: {email}")
        raise InvalidCredentials("Invalid email or password")
