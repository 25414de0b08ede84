"""USER MODEL"""

import logging
import uuid

from sqlalchemy import false, text
from werkzeug.security import check_password_hash, generate_password_hash

from hpapi import db
from hpapi.models import GUID
from hpapi.utils.clock import minutes_until, utcnow

db.GUID = GUID

logger = logging.getLogger(__name__)

ROLES = ("patient", "provider", "admin", "superadmin")


class User(db.Model):
    """User Model

    The account security record lives on the user row: the lockout counters,
    the forced password change flag and the MFA gate flags.
    """

    __table_args__ = (
        db.CheckConstraint(
            "account_locked OR lock_expires_at IS NULL",
            name="ck_user_lock_expiry_requires_lock",
        ),
        db.CheckConstraint(
            "failed_login_attempts >= 0",
            name="ck_user_failed_login_attempts_non_negative",
        ),
        db.Index(
            "ix_user_account_locked",
            "account_locked",
            postgresql_where=text("account_locked"),
        ),
    )

    id = db.Column(
        db.GUID(),
        default=lambda: str(uuid.uuid4()),
        primary_key=True,
        autoincrement=False,
    )
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)
    password = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="patient")
    created_at = db.Column(db.DateTime(), default=utcnow)
    updated_at = db.Column(db.DateTime(), default=utcnow, onupdate=utcnow)
    last_login_at = db.Column(db.DateTime(), nullable=True)
    password_last_changed = db.Column(db.DateTime(), nullable=True)

    # Lockout state, mutated only through conditional UPDATE statements issued
    # by LockoutService and by the password and unlock services
    failed_login_attempts = db.Column(
        db.Integer(), nullable=False, default=0, server_default="0"
    )
    last_failed_login = db.Column(db.DateTime(), nullable=True)
    account_locked = db.Column(
        db.Boolean(), nullable=False, default=False, server_default=false()
    )
    lock_expires_at = db.Column(db.DateTime(), nullable=True)

    change_password_required = db.Column(
        db.Boolean(), nullable=False, default=False, server_default=false()
    )
    mfa_enabled = db.Column(
        db.Boolean(), nullable=False, default=False, server_default=false()
    )
    mfa_required = db.Column(
        db.Boolean(), nullable=False, default=False, server_default=false()
    )

    user_refresh_tokens = db.relationship(
        "RefreshToken",
        cascade="all, delete-orphan",
        lazy="dynamic",
        back_populates="user",
    )

    def __init__(
        self,
        email,
        password,
        role="patient",
        change_password_required=False,
        mfa_required=False,
    ):
        self.email = email.strip().lower()
        self.password = self.set_password(password)
        self.role = role if role in ROLES else "patient"
        self.change_password_required = change_password_required
        self.mfa_required = mfa_required
        self.mfa_enabled = False
        self.failed_login_attempts = 0
        self.account_locked = False
        self.password_last_changed = utcnow()

    def __repr__(self):
        return f"<User {self.email!r}>"

    def serialize(self, include=None, exclude=None):
        """Return object data in easily serializeable format

        Args:
            include (list, optional): Additional sections to include
                ('security' adds lockout counters and lock expiry)
            exclude (list, optional): Fields to drop from the output

        Returns:
            dict: id, email, role, timestamps and the access gate flags the
            UI needs to route the user (change_password_required,
            mfa_required, mfa_enabled)
        """
        include = include if include else []
        exclude = exclude if exclude else []
        user = {
            "id": str(self.id),
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "last_login_at": self.last_login_at.isoformat()
            if self.last_login_at
            else None,
            "change_password_required": self.change_password_required,
            "mfa_required": self.mfa_required,
            "mfa_enabled": self.mfa_enabled,
        }

        if "security" in include:
            user["security"] = {
                "account_locked": self.account_locked,
                "failed_login_attempts": self.failed_login_attempts,
                "last_failed_login": self.last_failed_login.isoformat()
                if self.last_failed_login
                else None,
                "lock_expires_at": self.lock_expires_at.isoformat()
                if self.lock_expires_at
                else None,
                "password_last_changed": self.password_last_changed.isoformat()
                if self.password_last_changed
                else None,
            }

        for field in exclude:
            user.pop(field, None)

        return user

    def set_password(self, password):
        return generate_password_hash(password)

    def check_password(self, password):
        """Check if provided password matches stored hash"""
        if not self.password:
            logger.warning(f"User {self.id} has no password hash stored")
            return False

        if not password:
            return False

        try:
            return check_password_hash(self.password, password)
        except ValueError as e:
            logger.error(f"Invalid password hash for user {self.id}: {e}")
            return False

    def is_locked(self, now=None):
        """True while the lock is in force. An expired lock reads as unlocked."""
        if not self.account_locked:
            return False
        if self.lock_expires_at is None:
            return True
        return (now or utcnow()) < self.lock_expires_at

    def minutes_remaining(self, now=None):
        if not self.is_locked(now):
            return 0
        return minutes_until(self.lock_expires_at, now)

    def clear_lockout(self):
        """Return the record to good standing."""
        self.failed_login_attempts = 0
        self.last_failed_login = None
        self.account_locked = False
        self.lock_expires_at = None
