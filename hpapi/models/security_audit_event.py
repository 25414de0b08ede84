"""SECURITY AUDIT EVENT MODEL

Durable, append-only record of security relevant state transitions: locks,
unlocks, emergency unlocks, password changes and denied access.

Rows are written in the same transaction as the change they describe and are
never updated. user_id carries no foreign key so the trail outlives the user.
"""

import json
import logging
import uuid

from hpapi import db
from hpapi.models import GUID
from hpapi.utils.clock import utcnow

db.GUID = GUID

logger = logging.getLogger(__name__)


class AuditEventType:
    """Constants for the kinds of security transitions that are recorded."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_AUTO_UNLOCKED = "ACCOUNT_AUTO_UNLOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    EMERGENCY_UNLOCK = "EMERGENCY_UNLOCK"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    PASSWORD_SET = "PASSWORD_SET"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    FORCE_PASSWORD_CHANGE = "FORCE_PASSWORD_CHANGE"
    TEMPORARY_PASSWORD_ISSUED = "TEMPORARY_PASSWORD_ISSUED"
    ACCESS_DENIED = "ACCESS_DENIED"

    _SEVERITY = {
        LOGIN_SUCCESS: "info",
        ACCOUNT_CREATED: "info",
        ACCOUNT_AUTO_UNLOCKED: "info",
        PASSWORD_RESET_REQUESTED: "info",
        LOGIN_FAILURE: "warning",
        ACCESS_DENIED: "warning",
        ACCOUNT_UNLOCKED: "warning",
        PASSWORD_SET: "warning",
        PASSWORD_CHANGE: "warning",
        PASSWORD_RESET: "warning",
        FORCE_PASSWORD_CHANGE: "warning",
        TEMPORARY_PASSWORD_ISSUED: "warning",
        ACCOUNT_LOCKED: "error",
        EMERGENCY_UNLOCK: "critical",
    }

    @classmethod
    def all(cls):
        return list(cls._SEVERITY)

    @classmethod
    def severity(cls, event_type):
        return cls._SEVERITY.get(event_type, "warning")


class SecurityAuditEvent(db.Model):
    """Security Audit Event Model"""

    __tablename__ = "security_audit_event"

    id = db.Column(
        db.GUID(),
        default=lambda: str(uuid.uuid4()),
        primary_key=True,
        autoincrement=False,
    )
    created_at = db.Column(db.DateTime(), default=utcnow, nullable=False, index=True)
    event_type = db.Column(db.String(40), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False)

    # Account the event is about
    user_id = db.Column(db.GUID(), nullable=True, index=True)
    user_email = db.Column(db.String(254), nullable=True)
    user_role = db.Column(db.String(16), nullable=True)

    # Who caused it: a user id for admin actions, an operator name for the CLI
    actor_id = db.Column(db.GUID(), nullable=True)
    actor_email = db.Column(db.String(254), nullable=True)
    # "self", "admin_api", "cli" or "system"
    actor_source = db.Column(db.String(20), nullable=False, default="system")

    reason = db.Column(db.Text(), nullable=True)
    # JSON-serialized context, never credentials
    details = db.Column(db.Text(), nullable=True)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    def __init__(
        self,
        event_type: str,
        user_id=None,
        user_email: str | None = None,
        user_role: str | None = None,
        actor_id=None,
        actor_email: str | None = None,
        actor_source: str = "system",
        reason: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        created_at=None,
    ):
        self.event_type = event_type
        self.severity = AuditEventType.severity(event_type)
        self.user_id = user_id
        self.user_email = user_email
        self.user_role = user_role
        self.actor_id = actor_id
        self.actor_email = actor_email
        self.actor_source = actor_source
        self.reason = reason
        self.details = json.dumps(details, default=str) if details else None
        self.ip_address = ip_address
        self.user_agent = user_agent[:500] if user_agent else None
        self.created_at = created_at or utcnow()

    def __repr__(self):
        return f"<SecurityAuditEvent {self.event_type} user_id={self.user_id}>"

    @property
    def details_dict(self):
        if not self.details:
            return {}
        try:
            return json.loads(self.details)
        except json.JSONDecodeError:
            logger.warning(f"[AUDIT]: Unreadable details on audit event {self.id}")
            return {}

    def serialize(self):
        """Return object data in easily serializable format."""
        return {
            "id": str(self.id) if self.id else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "event_type": self.event_type,
            "severity": self.severity,
            "user_id": str(self.user_id) if self.user_id else None,
            "user_email": self.user_email,
            "user_role": self.user_role,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "actor_email": self.actor_email,
            "actor_source": self.actor_source,
            "reason": self.reason,
            "details": self.details_dict,
            "ip_address": self.ip_address,
        }
