"""
Concurrent login attempts against a single account.

Each worker thread pushes its own app context and therefore works with its own
database session and connection.
"""

from concurrent.futures import ThreadPoolExecutor

from hpapi import db
from hpapi.models import SecurityAuditEvent, User
from hpapi.models.security_audit_event import AuditEventType
from hpapi.services import LockoutPolicy, LockoutService, LoginDecision

WORKERS = 10


def run_parallel_attempts(app, user_id, credentials_valid, policy=None):
    # SQLite reports lock contention far more often than PostgreSQL
    policy = policy or LockoutPolicy(conflict_retries=5)

    def attempt(_):
        with app.app_context():
            user = db.session.get(User, user_id)
            return LockoutService.register_attempt(
                user, credentials_valid, policy=policy
            )

    with ThreadPoolExecutor(max_workers=WORKERS) as executor:
        return list(executor.map(attempt, range(WORKERS)))


class TestConcurrentLockout:
    def test_parallel_failures_lose_no_increment(self, app, patient_user):
        outcomes = run_parallel_attempts(app, patient_user.id, False)

        db.session.expire_all()
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == WORKERS
        assert user.account_locked
        assert len(outcomes) == WORKERS

    def test_parallel_failures_lock_exactly_once(self, app, patient_user):
        outcomes = run_parallel_attempts(app, patient_user.id, False)

        assert sum(1 for outcome in outcomes if outcome.lock_applied) == 1
        locked = [
            outcome
            for outcome in outcomes
            if outcome.decision == LoginDecision.ACCOUNT_LOCKED
        ]
        # Attempts five to ten all see the lock
        assert len(locked) == WORKERS - 4
        assert (
            SecurityAuditEvent.query.filter_by(
                event_type=AuditEventType.ACCOUNT_LOCKED
            ).count()
            == 1
        )

    def test_lock_expiry_is_set_once(self, app, patient_user):
        outcomes = run_parallel_attempts(app, patient_user.id, False)

        db.session.expire_all()
        user = db.session.get(User, patient_user.id)
        expiries = {
            outcome.lock_expires_at
            for outcome in outcomes
            if outcome.decision == LoginDecision.ACCOUNT_LOCKED
        }
        assert expiries == {user.lock_expires_at}

    def test_parallel_successes_keep_account_clean(self, app, patient_user):
        outcomes = run_parallel_attempts(app, patient_user.id, True)

        assert all(outcome.accepted for outcome in outcomes)
        db.session.expire_all()
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 0
        assert not user.account_locked
