"""Tests for the security audit trail"""

from unittest.mock import patch
import uuid

import pytest

from hpapi import db
from hpapi.errors import AuditWriteError
from hpapi.models import SecurityAuditEvent, User
from hpapi.models.security_audit_event import AuditEventType
from hpapi.services import ActorContext, AuditService


class TestActorContext:
    def test_from_user(self, app, admin_user):
        actor = ActorContext.from_user(admin_user)

        assert actor.actor_id == str(admin_user.id)
        assert actor.actor_email == admin_user.email
        assert actor.source == "admin_api"

    def test_operator(self):
        actor = ActorContext.operator("jdoe")

        assert actor.actor_id is None
        assert actor.actor_email == "jdoe"
        assert actor.source == "cli"

    def test_system(self):
        assert ActorContext.system() == ActorContext(None, None, "system")


class TestRecord:
    def test_record_commits_with_caller(self, app, patient_user):
        event = AuditService.record(
            AuditEventType.FORCE_PASSWORD_CHANGE,
            user=patient_user,
            actor=ActorContext.operator("ops"),
            reason="Suspicious activity",
            details={"ticket": "SEC-12"},
        )
        db.session.commit()

        stored = db.session.get(SecurityAuditEvent, event.id)
        assert stored.user_id == patient_user.id
        assert stored.user_email == patient_user.email
        assert stored.user_role == "patient"
        assert stored.severity == "warning"
        assert stored.reason == "Suspicious activity"
        assert stored.details_dict == {"ticket": "SEC-12"}

    def test_record_rolls_back_with_caller(self, app, patient_user):
        patient_user.change_password_required = True
        AuditService.record(AuditEventType.FORCE_PASSWORD_CHANGE, user=patient_user)
        db.session.rollback()

        assert SecurityAuditEvent.query.count() == 0
        assert not db.session.get(User, patient_user.id).change_password_required

    def test_record_for_pending_user(self, app):
        user = User(email="pending@test.com", password="PatientPass123!")
        db.session.add(user)

        event = AuditService.record(AuditEventType.ACCOUNT_CREATED, user=user)
        db.session.commit()

        assert event is not None
        stored = SecurityAuditEvent.query.filter_by(
            event_type=AuditEventType.ACCOUNT_CREATED
        ).one()
        assert stored.user_id == user.id
        assert stored.user_email == "pending@test.com"

    def test_record_without_user(self, app):
        event = AuditService.record(
            AuditEventType.PASSWORD_RESET_REQUESTED,
            user_email="nobody@test.com",
            commit=True,
        )

        assert event.user_id is None
        assert event.user_email == "nobody@test.com"
        assert event.actor_source == "system"

    def test_record_captures_request_metadata(self, app, patient_user):
        with app.test_request_context(
            "/api/auth/login",
            headers={"User-Agent": "pytest-agent"},
            environ_base={"REMOTE_ADDR": "10.1.2.3"},
        ):
            event = AuditService.record(
                AuditEventType.LOGIN_SUCCESS, user=patient_user, commit=True
            )

        assert event.ip_address == "10.1.2.3"
        assert event.user_agent == "pytest-agent"

    def test_failed_write_keeps_caller_change(self, app, patient_user):
        patient_user.change_password_required = True

        with patch(
            "hpapi.services.audit_service.SecurityAuditEvent", return_value=object()
        ):
            event = AuditService.record(
                AuditEventType.FORCE_PASSWORD_CHANGE, user=patient_user
            )
        db.session.commit()

        assert event is None
        db.session.expire_all()
        assert db.session.get(User, patient_user.id).change_password_required
        assert SecurityAuditEvent.query.count() == 0

    def test_failed_write_is_reported(self, app, patient_user):
        with (
            patch(
                "hpapi.services.audit_service.SecurityAuditEvent",
                return_value=object(),
            ),
            patch(
                "hpapi.services.audit_service.log_security_event"
            ) as log_security_event,
        ):
            AuditService.record(AuditEventType.ACCOUNT_LOCKED, user=patient_user)

        first_call = log_security_event.call_args_list[0]
        assert first_call.args[0] == "AUDIT_WRITE_FAILED"
        assert first_call.kwargs["level"] == "critical"

    def test_required_write_raises(self, app, patient_user):
        with patch(
            "hpapi.services.audit_service.SecurityAuditEvent", return_value=object()
        ):
            with pytest.raises(AuditWriteError):
                AuditService.record(
                    AuditEventType.EMERGENCY_UNLOCK, user=patient_user, required=True
                )


class TestListEvents:
    @pytest.fixture
    def events(self, app, patient_user, admin_user):
        for event_type in (
            AuditEventType.LOGIN_FAILURE,
            AuditEventType.LOGIN_FAILURE,
            AuditEventType.ACCOUNT_LOCKED,
        ):
            AuditService.record(event_type, user=patient_user)
        AuditService.record(AuditEventType.LOGIN_SUCCESS, user=admin_user)
        db.session.commit()

    def test_lists_newest_first(self, app, events):
        events, total = AuditService.list_events()

        assert total == 4
        timestamps = [event.created_at for event in events]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_filter_by_user(self, app, events, patient_user):
        events, total = AuditService.list_events(user_id=str(patient_user.id))

        assert total == 3
        assert {event.user_id for event in events} == {patient_user.id}

    def test_filter_by_type(self, app, events):
        events, total = AuditService.list_events(
            event_type=AuditEventType.LOGIN_FAILURE
        )

        assert total == 2

    def test_pagination(self, app, events):
        page_one, total = AuditService.list_events(page=1, per_page=3)
        page_two, _ = AuditService.list_events(page=2, per_page=3)

        assert total == 4
        assert len(page_one) == 3
        assert len(page_two) == 1

    def test_unknown_user_is_empty(self, app, events):
        events, total = AuditService.list_events(user_id=str(uuid.uuid4()))

        assert events == []
        assert total == 0

    @pytest.mark.parametrize(
        "kwargs",
        [{"page": 0}, {"per_page": 0}, {"per_page": 501}, {"user_id": "not-a-uuid"}],
    )
    def test_invalid_arguments(self, app, kwargs):
        with pytest.raises(ValueError):
            AuditService.list_events(**kwargs)


class TestEventTypes:
    def test_every_type_has_a_severity(self):
        for event_type in AuditEventType.all():
            assert AuditEventType.severity(event_type) in (
                "info",
                "warning",
                "error",
                "critical",
            )

    def test_emergency_unlock_is_critical(self):
        assert AuditEventType.severity(AuditEventType.EMERGENCY_UNLOCK) == "critical"
