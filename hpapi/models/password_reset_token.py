"""PASSWORD RESET TOKEN MODEL

Single-use, time-limited tokens for the self-service password reset flow.
Only the SHA-256 digest of a token is stored; the plaintext exists in memory
long enough to be emailed to the account holder.
"""

import datetime
import hashlib
import logging
import secrets
import uuid

from hpapi import db
from hpapi.config import SETTINGS
from hpapi.models import GUID
from hpapi.utils.clock import utcnow

db.GUID = GUID

logger = logging.getLogger(__name__)


def hash_token(token_string):
    return hashlib.sha256(token_string.encode("utf-8")).hexdigest()


class PasswordResetToken(db.Model):
    """Password Reset Token Model

    Each token:
    - Expires after PASSWORD_RESET_TOKEN_EXPIRY_HOURS (1 hour by default)
    - Can only be used once
    - Is associated with a single user, who has at most one live token
    """

    id = db.Column(
        db.GUID(),
        default=lambda: str(uuid.uuid4()),
        primary_key=True,
        autoincrement=False,
    )
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(
        db.GUID(),
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime(), default=utcnow)
    expires_at = db.Column(db.DateTime(), nullable=False)
    used_at = db.Column(db.DateTime(), nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("password_reset_tokens", cascade="all, delete-orphan"),
    )

    def __init__(self, user_id):
        self.user_id = user_id
        # Plaintext is never persisted
        self.token = secrets.token_urlsafe(48)
        self.token_hash = hash_token(self.token)
        self.created_at = utcnow()
        self.expires_at = self.created_at + datetime.timedelta(
            hours=SETTINGS.get("PASSWORD_RESET_TOKEN_EXPIRY_HOURS", 1)
        )

    def __repr__(self):
        return f"<PasswordResetToken user_id={self.user_id!r}>"

    def is_valid(self, now=None):
        """Check if the token is valid (not expired and not used)."""
        now = now or utcnow()
        return self.used_at is None and self.expires_at > now

    def mark_used(self):
        self.used_at = utcnow()

    @classmethod
    def get_valid_token(cls, token_string):
        """Find a valid (unexpired, unused) token by its plaintext value.

        Returns:
            PasswordResetToken if found and valid, None otherwise
        """
        if not token_string:
            return None
        token = cls.query.filter_by(token_hash=hash_token(token_string)).first()
        if token and token.is_valid():
            return token
        return None

    @classmethod
    def invalidate_user_tokens(cls, user_id):
        """Invalidate all live tokens for a user.

        Called when creating a new reset token and after any password change.
        """
        now = utcnow()
        return cls.query.filter(
            cls.user_id == user_id,
            cls.used_at.is_(None),
            cls.expires_at > now,
        ).update({"used_at": now}, synchronize_session=False)

    @classmethod
    def cleanup_expired_tokens(cls, days_old=7):
        """Remove tokens older than the specified number of days.

        Returns:
            Number of tokens deleted
        """
        cutoff = utcnow() - datetime.timedelta(days=days_old)
        result = cls.query.filter(cls.created_at < cutoff).delete(
            synchronize_session=False
        )
        db.session.commit()
        return result
