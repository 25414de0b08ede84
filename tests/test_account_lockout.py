"""Tests for account lockout functionality"""

import datetime
from unittest.mock import patch

from conftest import PATIENT_TEST_PASSWORD, WRONG_PASSWORD
import pytest
from sqlalchemy.exc import OperationalError

from hpapi import db
from hpapi.config import SETTINGS
from hpapi.errors import AccountLocked, InvalidCredentials, StorageConflict
from hpapi.models import SecurityAuditEvent, User
from hpapi.models.security_audit_event import AuditEventType
from hpapi.services import LockoutPolicy, LockoutService, LoginDecision, UserService
from hpapi.utils.clock import utcnow


def audit_count(event_type, user=None):
    query = SecurityAuditEvent.query.filter_by(event_type=event_type)
    if user is not None:
        query = query.filter(SecurityAuditEvent.user_id == user.id)
    return query.count()


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


class TestRegisterAttempt:
    """Lockout state transitions applied to the database"""

    def test_user_starts_unlocked(self, patient_user):
        assert patient_user.failed_login_attempts == 0
        assert patient_user.account_locked is False
        assert patient_user.lock_expires_at is None
        assert not patient_user.is_locked()

    def test_failed_attempt_increments_counter(self, app, patient_user):
        now = utcnow()
        outcome = LockoutService.register_attempt(patient_user, False, now=now)

        assert outcome.decision == LoginDecision.INVALID_CREDENTIALS
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 1
        assert user.last_failed_login == now
        assert not user.account_locked
        assert audit_count(AuditEventType.LOGIN_FAILURE, user) == 1

    def test_fifth_failure_locks_account(self, app, patient_user):
        now = utcnow()
        for _ in range(4):
            LockoutService.register_attempt(patient_user, False, now=now)

        outcome = LockoutService.register_attempt(patient_user, False, now=now)

        assert outcome.decision == LoginDecision.ACCOUNT_LOCKED
        assert outcome.lock_applied
        user = db.session.get(User, patient_user.id)
        assert user.account_locked
        assert user.failed_login_attempts == 5
        assert user.lock_expires_at == now + datetime.timedelta(minutes=15)
        assert audit_count(AuditEventType.ACCOUNT_LOCKED, user) == 1
        assert audit_count(AuditEventType.LOGIN_FAILURE, user) == 4

    def test_success_resets_counter(self, app, patient_user):
        for _ in range(3):
            LockoutService.register_attempt(patient_user, False)

        outcome = LockoutService.register_attempt(patient_user, True)

        assert outcome.accepted
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 0
        assert user.last_failed_login is None
        assert user.last_login_at is not None
        assert audit_count(AuditEventType.LOGIN_SUCCESS, user) == 1

    def test_correct_password_rejected_while_locked(self, app, patient_user):
        now = utcnow()
        for _ in range(5):
            LockoutService.register_attempt(patient_user, False, now=now)

        later = now + datetime.timedelta(minutes=5)
        outcome = LockoutService.register_attempt(patient_user, True, now=later)

        assert outcome.decision == LoginDecision.ACCOUNT_LOCKED
        assert outcome.minutes_remaining(later) == 10
        user = db.session.get(User, patient_user.id)
        assert user.account_locked
        assert user.failed_login_attempts == 5
        assert user.last_login_at is None

    def test_failure_while_locked_does_not_extend_lock(self, app, patient_user):
        now = utcnow()
        for _ in range(5):
            LockoutService.register_attempt(patient_user, False, now=now)
        expires_at = db.session.get(User, patient_user.id).lock_expires_at

        later = now + datetime.timedelta(minutes=10)
        outcome = LockoutService.register_attempt(patient_user, False, now=later)

        assert outcome.decision == LoginDecision.ACCOUNT_LOCKED
        assert not outcome.lock_applied
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 6
        assert user.last_failed_login == later
        assert user.lock_expires_at == expires_at
        assert audit_count(AuditEventType.ACCOUNT_LOCKED, user) == 1

    def test_expired_lock_lifts_on_next_attempt(self, app, patient_user):
        now = utcnow()
        for _ in range(5):
            LockoutService.register_attempt(patient_user, False, now=now)

        after_expiry = now + datetime.timedelta(minutes=16)
        outcome = LockoutService.register_attempt(
            patient_user, True, now=after_expiry
        )

        assert outcome.accepted
        assert outcome.auto_unlocked
        user = db.session.get(User, patient_user.id)
        assert not user.account_locked
        assert user.lock_expires_at is None
        assert user.failed_login_attempts == 0
        assert audit_count(AuditEventType.ACCOUNT_AUTO_UNLOCKED, user) == 1

    def test_thirty_minute_lock_lifts_after_thirty_one(self, app, make_user):
        policy = LockoutPolicy(
            max_attempts=5, lock_duration=datetime.timedelta(minutes=30)
        )
        user = make_user("user@example.com")
        now = utcnow()
        for _ in range(5):
            outcome = LockoutService.register_attempt(
                user, False, now=now, policy=policy
            )

        assert outcome.lock_applied
        assert db.session.get(User, user.id).lock_expires_at == now + (
            datetime.timedelta(minutes=30)
        )

        still_locked = now + datetime.timedelta(minutes=29)
        outcome = LockoutService.register_attempt(
            user, True, now=still_locked, policy=policy
        )
        assert outcome.decision == LoginDecision.ACCOUNT_LOCKED

        after_expiry = now + datetime.timedelta(minutes=31)
        outcome = LockoutService.register_attempt(
            user, True, now=after_expiry, policy=policy
        )

        assert outcome.accepted
        assert outcome.auto_unlocked
        user = db.session.get(User, user.id)
        assert user.email == "user@example.com"
        assert not user.account_locked
        assert user.lock_expires_at is None
        assert user.failed_login_attempts == 0
        assert user.last_login_at == after_expiry

    def test_indefinite_lock_requires_manual_unlock(self, app, patient_user):
        policy = LockoutPolicy(lock_duration=None)
        now = utcnow()
        for _ in range(5):
            outcome = LockoutService.register_attempt(
                patient_user, False, now=now, policy=policy
            )

        assert outcome.requires_manual_unlock
        user = db.session.get(User, patient_user.id)
        assert user.account_locked
        assert user.lock_expires_at is None

        much_later = now + datetime.timedelta(days=30)
        outcome = LockoutService.register_attempt(
            patient_user, True, now=much_later, policy=policy
        )
        assert outcome.decision == LoginDecision.ACCOUNT_LOCKED

    def test_custom_threshold(self, app, patient_user):
        policy = LockoutPolicy(max_attempts=2)

        LockoutService.register_attempt(patient_user, False, policy=policy)
        outcome = LockoutService.register_attempt(patient_user, False, policy=policy)

        assert outcome.lock_applied
        assert outcome.failed_login_attempts == 2

    def test_lock_contention_is_retried(self, app, patient_user):
        original = LockoutService._apply_attempt
        calls = []

        def contended_once(*args):
            calls.append(args)
            if len(calls) == 1:
                raise OperationalError(
                    "UPDATE user", {}, Exception("database is locked")
                )
            return original(*args)

        with patch.object(
            LockoutService, "_apply_attempt", side_effect=contended_once
        ):
            outcome = LockoutService.register_attempt(patient_user, False)

        assert len(calls) == 2
        assert outcome.failed_login_attempts == 1

    def test_persistent_conflict_raises(self, app, patient_user):
        with patch.object(
            LockoutService,
            "_apply_attempt",
            side_effect=StorageConflict("Account lock changed during the attempt"),
        ) as apply_attempt:
            with pytest.raises(StorageConflict):
                LockoutService.register_attempt(patient_user, False)

        assert apply_attempt.call_count == 2
        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 0

    def test_other_operational_errors_are_not_retried(self, app, patient_user):
        with patch.object(
            LockoutService,
            "_apply_attempt",
            side_effect=OperationalError("UPDATE user", {}, Exception("disk I/O")),
        ) as apply_attempt:
            with pytest.raises(OperationalError):
                LockoutService.register_attempt(patient_user, False)

        assert apply_attempt.call_count == 1


class TestLockStatus:
    def test_unlocked_status(self, app, patient_user):
        status = LockoutService.lock_status(patient_user)

        assert status == {
            "account_locked": False,
            "failed_login_attempts": 0,
            "max_failed_attempts": 5,
            "lock_expires_at": None,
            "minutes_remaining": 0,
            "requires_manual_unlock": False,
        }

    def test_locked_status(self, app, make_user):
        now = utcnow()
        user = make_user(
            "locked@test.com",
            account_locked=True,
            failed_login_attempts=5,
            lock_expires_at=now + datetime.timedelta(minutes=7),
        )

        status = LockoutService.lock_status(user, now=now)

        assert status["account_locked"] is True
        assert status["minutes_remaining"] == 7
        assert status["requires_manual_unlock"] is False

    def test_expired_lock_reads_as_unlocked(self, app, make_user):
        now = utcnow()
        user = make_user(
            "expired@test.com",
            account_locked=True,
            failed_login_attempts=5,
            lock_expires_at=now - datetime.timedelta(minutes=1),
        )

        status = LockoutService.lock_status(user, now=now)

        assert status["account_locked"] is False
        assert status["failed_login_attempts"] == 0
        assert status["lock_expires_at"] is None


class TestAuthenticateUser:
    def test_wrong_password(self, app, patient_user):
        with pytest.raises(InvalidCredentials):
            UserService.authenticate_user(patient_user.email, WRONG_PASSWORD)

    def test_unknown_email_leaves_no_audit_row(self, app):
        with pytest.raises(InvalidCredentials):
            UserService.authenticate_user("nobody@test.com", WRONG_PASSWORD)

        assert SecurityAuditEvent.query.count() == 0

    def test_email_is_case_insensitive(self, app, patient_user):
        user = UserService.authenticate_user(
            "  Patient@Test.COM ", PATIENT_TEST_PASSWORD
        )

        assert user.id == patient_user.id

    def test_locked_account_raises_account_locked(self, app, patient_user):
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                UserService.authenticate_user(patient_user.email, WRONG_PASSWORD)

        with pytest.raises(AccountLocked) as exc_info:
            UserService.authenticate_user(patient_user.email, WRONG_PASSWORD)

        assert exc_info.value.minutes_remaining == 15
        assert exc_info.value.requires_manual_unlock is False
        assert exc_info.value.serialize["error_code"] == "account_locked"


class TestLoginLockout:
    """Lockout as seen through the login endpoint"""

    def test_lockout_after_5_failures(self, client, patient_user):
        for _ in range(5):
            response = login(client, patient_user.email, WRONG_PASSWORD)
            assert response.status_code == 401

        user = db.session.get(User, patient_user.id)
        assert user.failed_login_attempts == 5
        assert user.is_locked()

        response = login(client, patient_user.email, PATIENT_TEST_PASSWORD)
        assert response.status_code == 401

    def test_locked_response_is_uniform_by_default(self, client, make_user):
        user = make_user(
            "locked@test.com",
            account_locked=True,
            failed_login_attempts=5,
            lock_expires_at=utcnow() + datetime.timedelta(minutes=10),
        )

        locked = login(client, user.email, PATIENT_TEST_PASSWORD)
        unknown = login(client, "nobody@test.com", PATIENT_TEST_PASSWORD)

        assert locked.status_code == unknown.status_code == 401
        assert locked.json == unknown.json
        assert "error_code" not in locked.json

    def test_locked_response_can_expose_status(self, client, make_user):
        user = make_user(
            "locked@test.com",
            account_locked=True,
            failed_login_attempts=5,
            lock_expires_at=utcnow() + datetime.timedelta(minutes=10),
        )

        with patch.dict(SETTINGS["LOCKOUT"], {"EXPOSE_LOCK_STATUS": True}):
            response = login(client, user.email, PATIENT_TEST_PASSWORD)

        assert response.status_code == 401
        assert response.json["error_code"] == "account_locked"
        assert response.json["minutes_remaining"] == 10
        assert response.json["requires_manual_unlock"] is False

    def test_expired_lock_allows_login(self, client, make_user):
        user = make_user(
            "expired@test.com",
            account_locked=True,
            failed_login_attempts=5,
            lock_expires_at=utcnow() - datetime.timedelta(minutes=1),
        )

        response = login(client, user.email, PATIENT_TEST_PASSWORD)

        assert response.status_code == 200
        refreshed = db.session.get(User, user.id)
        assert not refreshed.account_locked
        assert refreshed.failed_login_attempts == 0
        assert audit_count(AuditEventType.ACCOUNT_AUTO_UNLOCKED, refreshed) == 1

    def test_storage_conflict_returns_503(self, client, patient_user):
        with patch.object(
            LockoutService,
            "register_attempt",
            side_effect=StorageConflict("Account security record is busy"),
        ):
            response = login(client, patient_user.email, PATIENT_TEST_PASSWORD)

        assert response.status_code == 503
