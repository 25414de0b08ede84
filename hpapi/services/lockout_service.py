"""LOCKOUT SERVICE

Counts failed logins, locks accounts when the threshold is reached and lifts
expired locks lazily on the next attempt.

``evaluate_attempt`` is the pure decision function. ``LockoutService`` applies
the same rules to the database with conditional UPDATE statements, so parallel
attempts against one account can neither lose an increment nor lock twice.
"""

from dataclasses import dataclass, replace
import datetime
import logging

import rollbar
from sqlalchemy import case, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from hpapi import db
from hpapi.config import SETTINGS
from hpapi.errors import StorageConflict, UserNotFound
from hpapi.models.security_audit_event import AuditEventType
from hpapi.models.user import User
from hpapi.services.audit_service import ActorContext, AuditService
from hpapi.utils.clock import minutes_until, utcnow

logger = logging.getLogger(__name__)

CONTENTION_ERRORS = (
    "database is locked",
    "deadlock detected",
    "could not serialize access",
    "lock not available",
)


@dataclass(frozen=True)
class LockoutPolicy:
    """Lockout configuration.

    ``lock_duration`` of None means locks never expire on their own.
    """

    max_attempts: int = 5
    lock_duration: datetime.timedelta | None = datetime.timedelta(minutes=15)
    expose_lock_status: bool = False
    conflict_retries: int = 1

    @classmethod
    def from_settings(cls, settings=None):
        config = (settings or SETTINGS).get("LOCKOUT", {})
        minutes = config.get("LOCKOUT_DURATION_MINUTES", 15)
        max_attempts = config.get("MAX_FAILED_ATTEMPTS", 5)
        if max_attempts < 1:
            raise ValueError("MAX_FAILED_ATTEMPTS must be at least 1")
        return cls(
            max_attempts=max_attempts,
            lock_duration=datetime.timedelta(minutes=minutes) if minutes else None,
            expose_lock_status=config.get("EXPOSE_LOCK_STATUS", False),
            conflict_retries=config.get("CONFLICT_RETRIES", 1),
        )

    def expiry(self, now):
        if self.lock_duration is None:
            return None
        return now + self.lock_duration


@dataclass(frozen=True)
class LockoutState:
    """Snapshot of the lockout fields of a security record."""

    failed_login_attempts: int = 0
    last_failed_login: datetime.datetime | None = None
    account_locked: bool = False
    lock_expires_at: datetime.datetime | None = None

    @classmethod
    def from_record(cls, record):
        if isinstance(record, cls):
            return record
        return cls(
            failed_login_attempts=record.failed_login_attempts or 0,
            last_failed_login=record.last_failed_login,
            account_locked=bool(record.account_locked),
            lock_expires_at=record.lock_expires_at,
        )

    def lock_expired(self, now):
        return (
            self.account_locked
            and self.lock_expires_at is not None
            and now >= self.lock_expires_at
        )


class LoginDecision:
    ACCEPTED = "accepted"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"


@dataclass(frozen=True)
class AttemptOutcome:
    decision: str
    failed_login_attempts: int = 0
    lock_expires_at: datetime.datetime | None = None
    lock_applied: bool = False
    auto_unlocked: bool = False

    @property
    def accepted(self):
        return self.decision == LoginDecision.ACCEPTED

    @property
    def requires_manual_unlock(self):
        return self.decision == LoginDecision.ACCOUNT_LOCKED and (
            self.lock_expires_at is None
        )

    def minutes_remaining(self, now=None):
        if self.decision != LoginDecision.ACCOUNT_LOCKED:
            return 0
        return minutes_until(self.lock_expires_at, now)


def evaluate_attempt(
    record,
    credentials_valid,
    now,
    max_attempts=5,
    lock_duration=datetime.timedelta(minutes=15),
):
    """Apply one login attempt to a lockout record.

    Returns the new ``LockoutState`` and the ``AttemptOutcome``. An expired
    lock is cleared before the attempt is judged. While locked, a correct
    password changes nothing and a wrong one still counts, but the lock and
    its expiry are never extended.
    """
    state = LockoutState.from_record(record)
    auto_unlocked = False

    if state.lock_expired(now):
        state = replace(
            state, failed_login_attempts=0, account_locked=False, lock_expires_at=None
        )
        auto_unlocked = True

    if state.account_locked:
        if not credentials_valid:
            state = replace(
                state,
                failed_login_attempts=state.failed_login_attempts + 1,
                last_failed_login=now,
            )
        return state, AttemptOutcome(
            LoginDecision.ACCOUNT_LOCKED,
            failed_login_attempts=state.failed_login_attempts,
            lock_expires_at=state.lock_expires_at,
        )

    if credentials_valid:
        state = replace(state, failed_login_attempts=0, last_failed_login=None)
        return state, AttemptOutcome(
            LoginDecision.ACCEPTED, auto_unlocked=auto_unlocked
        )

    attempts = state.failed_login_attempts + 1
    if attempts >= max_attempts:
        expires_at = now + lock_duration if lock_duration else None
        state = replace(
            state,
            failed_login_attempts=attempts,
            last_failed_login=now,
            account_locked=True,
            lock_expires_at=expires_at,
        )
        return state, AttemptOutcome(
            LoginDecision.ACCOUNT_LOCKED,
            failed_login_attempts=attempts,
            lock_expires_at=expires_at,
            lock_applied=True,
            auto_unlocked=auto_unlocked,
        )

    state = replace(state, failed_login_attempts=attempts, last_failed_login=now)
    return state, AttemptOutcome(
        LoginDecision.INVALID_CREDENTIALS,
        failed_login_attempts=attempts,
        auto_unlocked=auto_unlocked,
    )


def _is_contention(error):
    message = str(error).lower()
    return any(text in message for text in CONTENTION_ERRORS)


class LockoutService:
    """Lockout Service"""

    @staticmethod
    def register_attempt(user, credentials_valid, now=None, policy=None):
        """Record a login attempt for ``user`` and commit the result.

        The state change and its audit rows share one transaction. A lost race
        is retried ``policy.conflict_retries`` times before StorageConflict is
        raised.
        """
        policy = policy or LockoutPolicy.from_settings()
        now = now or utcnow()
        user_id = user.id
        logger.info(f"[SERVICE]: Registering login attempt for user {user_id}")

        for attempt in range(policy.conflict_retries + 1):
            try:
                outcome = LockoutService._apply_attempt(
                    user_id, credentials_valid, now, policy
                )
                LockoutService._audit(user, outcome, now)
                db.session.commit()
                return outcome
            except StorageConflict:
                db.session.rollback()
                if attempt == policy.conflict_retries:
                    logger.error(
                        f"[SERVICE]: Lockout update for user {user_id} kept "
                        "conflicting, giving up"
                    )
                    raise
                logger.warning(
                    f"[SERVICE]: Lockout update for user {user_id} conflicted, "
                    "retrying"
                )
            except OperationalError as error:
                db.session.rollback()
                if not _is_contention(error):
                    rollbar.report_exc_info()
                    raise
                if attempt == policy.conflict_retries:
                    logger.error(
                        f"[SERVICE]: Lockout update for user {user_id} kept "
                        f"hitting lock contention: {error}"
                    )
                    raise StorageConflict(
                        "Account security record is busy, please retry"
                    ) from error
                logger.warning(
                    f"[SERVICE]: Lock contention updating user {user_id}, retrying"
                )
            except SQLAlchemyError:
                db.session.rollback()
                rollbar.report_exc_info()
                raise

        # Unreachable: the last iteration always returns or raises
        raise StorageConflict("Account security record is busy, please retry")

    @staticmethod
    def _apply_attempt(user_id, credentials_valid, now, policy):
        auto_unlocked = (
            User.query.filter(
                User.id == user_id,
                User.account_locked.is_(True),
                User.lock_expires_at.isnot(None),
                User.lock_expires_at <= now,
            ).update(
                {
                    User.account_locked: False,
                    User.failed_login_attempts: 0,
                    User.lock_expires_at: None,
                },
                synchronize_session=False,
            )
            == 1
        )

        if credentials_valid:
            accepted = User.query.filter(
                User.id == user_id, User.account_locked.is_(False)
            ).update(
                {
                    User.failed_login_attempts: 0,
                    User.last_failed_login: None,
                    User.last_login_at: now,
                },
                synchronize_session=False,
            )
            if accepted == 1:
                return AttemptOutcome(
                    LoginDecision.ACCEPTED, auto_unlocked=auto_unlocked
                )

            state = LockoutService._read_state(user_id)
            if not state.account_locked:
                raise StorageConflict("Account was unlocked during the attempt")
            return AttemptOutcome(
                LoginDecision.ACCOUNT_LOCKED,
                failed_login_attempts=state.failed_login_attempts,
                lock_expires_at=state.lock_expires_at,
            )

        reaches_threshold = User.failed_login_attempts + 1 >= policy.max_attempts
        expires_at = policy.expiry(now)
        counted = User.query.filter(
            User.id == user_id, User.account_locked.is_(False)
        ).update(
            {
                User.failed_login_attempts: User.failed_login_attempts + 1,
                User.last_failed_login: now,
                User.account_locked: case((reaches_threshold, True), else_=False),
                User.lock_expires_at: case((reaches_threshold, expires_at), else_=None)
                if expires_at is not None
                else None,
            },
            synchronize_session=False,
        )
        if counted == 1:
            state = LockoutService._read_state(user_id)
            if state.account_locked:
                logger.warning(
                    f"[SERVICE]: Locking user {user_id} after "
                    f"{state.failed_login_attempts} failed attempts"
                )
                return AttemptOutcome(
                    LoginDecision.ACCOUNT_LOCKED,
                    failed_login_attempts=state.failed_login_attempts,
                    lock_expires_at=state.lock_expires_at,
                    lock_applied=True,
                    auto_unlocked=auto_unlocked,
                )
            return AttemptOutcome(
                LoginDecision.INVALID_CREDENTIALS,
                failed_login_attempts=state.failed_login_attempts,
                auto_unlocked=auto_unlocked,
            )

        # Already locked: count the attempt, leave the lock and expiry alone
        counted = User.query.filter(
            User.id == user_id, User.account_locked.is_(True)
        ).update(
            {
                User.failed_login_attempts: User.failed_login_attempts + 1,
                User.last_failed_login: now,
            },
            synchronize_session=False,
        )
        if counted == 0:
            raise StorageConflict("Account lock changed during the attempt")

        state = LockoutService._read_state(user_id)
        return AttemptOutcome(
            LoginDecision.ACCOUNT_LOCKED,
            failed_login_attempts=state.failed_login_attempts,
            lock_expires_at=state.lock_expires_at,
        )

    @staticmethod
    def _read_state(user_id):
        row = db.session.execute(
            select(
                User.failed_login_attempts,
                User.last_failed_login,
                User.account_locked,
                User.lock_expires_at,
            ).where(User.id == user_id)
        ).first()
        if row is None:
            raise UserNotFound(f"User with id {user_id} does not exist")
        return LockoutState(
            failed_login_attempts=row.failed_login_attempts,
            last_failed_login=row.last_failed_login,
            account_locked=bool(row.account_locked),
            lock_expires_at=row.lock_expires_at,
        )

    @staticmethod
    def _audit(user, outcome, now):
        actor = ActorContext.system()
        if outcome.auto_unlocked:
            AuditService.record(
                AuditEventType.ACCOUNT_AUTO_UNLOCKED,
                user=user,
                actor=actor,
                details={"unlocked_at": now},
            )

        if outcome.accepted:
            AuditService.record(AuditEventType.LOGIN_SUCCESS, user=user, actor=actor)
            return

        if outcome.lock_applied:
            AuditService.record(
                AuditEventType.ACCOUNT_LOCKED,
                user=user,
                actor=actor,
                details={
                    "failed_login_attempts": outcome.failed_login_attempts,
                    "lock_expires_at": outcome.lock_expires_at,
                    "requires_manual_unlock": outcome.requires_manual_unlock,
                },
            )
            return

        AuditService.record(
            AuditEventType.LOGIN_FAILURE,
            user=user,
            actor=actor,
            details={
                "reason": outcome.decision,
                "failed_login_attempts": outcome.failed_login_attempts,
            },
        )

    @staticmethod
    def lock_status(user, now=None):
        """Read-only view of where ``user`` stands against the lockout policy."""
        now = now or utcnow()
        policy = LockoutPolicy.from_settings()
        state = LockoutState.from_record(user)
        locked = state.account_locked and not state.lock_expired(now)
        return {
            "account_locked": locked,
            "failed_login_attempts": 0
            if state.lock_expired(now)
            else state.failed_login_attempts,
            "max_failed_attempts": policy.max_attempts,
            "lock_expires_at": state.lock_expires_at.isoformat()
            if locked and state.lock_expires_at
            else None,
            "minutes_remaining": minutes_until(state.lock_expires_at, now)
            if locked
            else 0,
            "requires_manual_unlock": locked and state.lock_expires_at is None,
        }
