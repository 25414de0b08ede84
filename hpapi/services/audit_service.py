"""AUDIT SERVICE"""

from dataclasses import dataclass
import logging
from uuid import UUID

import rollbar
from sqlalchemy.exc import SQLAlchemyError

from hpapi import db
from hpapi.errors import AuditWriteError
from hpapi.models.security_audit_event import AuditEventType, SecurityAuditEvent
from hpapi.utils.security_events import log_security_event, request_metadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """Who is performing a security transition.

    Passed explicitly into every service call that changes account state.
    """

    actor_id: str | None = None
    actor_email: str | None = None
    source: str = "system"

    @classmethod
    def from_user(cls, user, source="admin_api"):
        return cls(actor_id=str(user.id), actor_email=user.email, source=source)

    @classmethod
    def operator(cls, name):
        """An operator working from the administrative command line."""
        return cls(actor_email=name, source="cli")

    @classmethod
    def system(cls):
        return cls()


class AuditService:
    """Audit Service"""

    @staticmethod
    def record(
        event_type,
        user=None,
        actor=None,
        reason=None,
        details=None,
        user_email=None,
        required=False,
        commit=False,
    ):
        """Write an audit row inside the caller's transaction.

        The row goes in under a savepoint. If the insert fails the savepoint is
        rolled back, the failure is logged as critical and reported to Rollbar,
        and the caller's state change is left intact. With ``required`` the
        failure is raised as AuditWriteError instead.
        """
        actor = actor or ActorContext.system()
        request_info = request_metadata()

        # Pending changes belong to the caller; flush them outside the savepoint
        # so their errors are not mistaken for audit failures. This also assigns
        # the id of a user that is still pending
        db.session.flush()

        user_id = str(user.id) if user is not None else None
        user_email = user.email if user is not None else user_email

        event = SecurityAuditEvent(
            event_type=event_type,
            user_id=user_id,
            user_email=user_email,
            user_role=user.role if user is not None else None,
            actor_id=actor.actor_id,
            actor_email=actor.actor_email,
            actor_source=actor.source,
            reason=reason,
            details=details,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent"),
        )

        try:
            with db.session.begin_nested():
                db.session.add(event)
        except SQLAlchemyError as error:
            logger.critical(
                f"[AUDIT]: Failed to write {event_type} audit record for user "
                f"{user_id}: {error}"
            )
            rollbar.report_exc_info()
            log_security_event(
                "AUDIT_WRITE_FAILED",
                user_id=user_id,
                details={"event_type": event_type, "error": str(error)},
                level="critical",
            )
            if required:
                raise AuditWriteError(
                    f"Audit record for {event_type} could not be written"
                ) from error
            event = None

        log_security_event(
            event_type,
            user_id=user_id,
            user_email=user_email,
            details={
                **(details or {}),
                "actor_id": actor.actor_id,
                "actor_source": actor.source,
                **({"reason": reason} if reason else {}),
            },
            level=AuditEventType.severity(event_type),
        )

        if commit:
            db.session.commit()
        return event

    @staticmethod
    def list_events(user_id=None, event_type=None, page=1, per_page=50):
        logger.info("[SERVICE]: Listing security audit events")
        if page < 1:
            raise ValueError("Page must be greater than 0")
        if per_page < 1 or per_page > 500:
            raise ValueError("Per page must be between 1 and 500")

        query = SecurityAuditEvent.query
        if user_id:
            try:
                user_id = UUID(str(user_id))
            except ValueError as error:
                raise ValueError("Invalid user_id") from error
            query = query.filter(SecurityAuditEvent.user_id == user_id)
        if event_type:
            query = query.filter(SecurityAuditEvent.event_type == event_type)

        total = query.count()
        events = (
            query.order_by(SecurityAuditEvent.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return events, total
