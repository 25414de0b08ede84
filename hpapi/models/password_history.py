"""PASSWORD HISTORY MODEL

Hashes of the passwords an account used before its current one, newest
first, so a password change can refuse a recently used password.
"""

import uuid

from werkzeug.security import check_password_hash

from hpapi import db
from hpapi.models import GUID
from hpapi.utils.clock import utcnow

db.GUID = GUID


class PasswordHistory(db.Model):
    """Password History Model"""

    __tablename__ = "password_history"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, nullable=False)
    user_id = db.Column(
        GUID(),
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship(
        "User",
        backref=db.backref("password_history", cascade="all, delete-orphan"),
    )

    def __init__(self, user_id, password_hash):
        self.user_id = user_id
        self.password_hash = password_hash
        self.created_at = utcnow()

    def __repr__(self):
        return f"<PasswordHistory user_id={self.user_id!r}>"

    @classmethod
    def recent(cls, user_id, limit):
        if not limit:
            return []
        return (
            cls.query.filter(cls.user_id == user_id)
            .order_by(cls.created_at.desc())
            .limit(limit)
            .all()
        )

    @classmethod
    def matches(cls, user_id, password, limit):
        """Whether ``password`` is one of the last ``limit`` replaced passwords."""
        return any(
            check_password_hash(entry.password_hash, password)
            for entry in cls.recent(user_id, limit)
        )

    @classmethod
    def remember(cls, user_id, password_hash, keep):
        """Store a replaced hash and drop entries beyond the newest ``keep``.

        Joins the caller's transaction.
        """
        if not keep or not password_hash:
            return
        db.session.add(cls(user_id=user_id, password_hash=password_hash))
        db.session.flush()
        stale = [
            entry.id
            for entry in cls.query.filter(cls.user_id == user_id)
            .order_by(cls.created_at.desc())
            .offset(keep)
            .all()
        ]
        if stale:
            cls.query.filter(cls.id.in_(stale)).delete(synchronize_session=False)
