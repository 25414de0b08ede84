"""Tests for the route access guard"""

from datetime import timedelta
from unittest.mock import patch

from conftest import auth_headers
import pytest

from hpapi import db
from hpapi.config import SETTINGS
from hpapi.errors import (
    AuthRequired,
    ChangePasswordRequired,
    MfaSetupRequired,
    RoleForbidden,
)
from hpapi.models import SecurityAuditEvent, User
from hpapi.models.security_audit_event import AuditEventType
from hpapi.utils.access_guard import (
    AccessReason,
    evaluate_access,
    landing_route,
)
from hpapi.utils.clock import utcnow

ADMIN_ONLY = ("admin", "superadmin")


class TestEvaluateAccess:
    def test_anonymous_is_sent_to_login(self, app):
        decision = evaluate_access(None, ADMIN_ONLY)

        assert not decision.allowed
        assert decision.reason == AccessReason.AUTH_REQUIRED
        assert decision.redirect_to == "/auth/login"
        assert isinstance(decision.as_error(), AuthRequired)
        assert decision.as_error().status == 401

    def test_allowed_role(self, app, admin_user):
        decision = evaluate_access(admin_user, ADMIN_ONLY)

        assert decision.allowed
        assert decision.reason == AccessReason.ALLOWED
        assert decision.as_error() is None

    def test_any_authenticated_user_when_no_roles(self, app, patient_user):
        assert evaluate_access(patient_user).allowed
        assert evaluate_access(patient_user, []).allowed

    def test_wrong_role_goes_to_own_landing_page(self, app, patient_user):
        decision = evaluate_access(patient_user, ADMIN_ONLY)

        assert decision.reason == AccessReason.ROLE_FORBIDDEN
        assert decision.redirect_to == "/dashboard"
        assert isinstance(decision.as_error(), RoleForbidden)

    def test_role_denial_is_audited(self, app, provider_user):
        evaluate_access(provider_user, ADMIN_ONLY)

        event = SecurityAuditEvent.query.filter_by(
            event_type=AuditEventType.ACCESS_DENIED
        ).one()
        assert event.user_id == provider_user.id
        assert event.details_dict["allowed_roles"] == ["admin", "superadmin"]

    def test_password_change_comes_first(self, app, patient_user):
        patient_user.change_password_required = True
        patient_user.mfa_required = True
        db.session.commit()

        decision = evaluate_access(patient_user, ADMIN_ONLY)

        assert decision.reason == AccessReason.CHANGE_PASSWORD_REQUIRED
        assert decision.redirect_to == "/auth/change-password"
        assert isinstance(decision.as_error(), ChangePasswordRequired)

    def test_expired_password_must_be_changed(self, app, patient_user):
        patient_user.password_last_changed = utcnow() - timedelta(days=91)
        patient_user.mfa_required = True
        db.session.commit()

        decision = evaluate_access(patient_user, ADMIN_ONLY)

        assert decision.reason == AccessReason.CHANGE_PASSWORD_REQUIRED
        assert decision.redirect_to == "/auth/change-password"

    def test_recent_password_is_not_expired(self, app, patient_user):
        patient_user.password_last_changed = utcnow() - timedelta(days=89)
        db.session.commit()

        assert evaluate_access(patient_user).allowed

    def test_password_expiry_can_be_disabled(self, app, patient_user):
        patient_user.password_last_changed = utcnow() - timedelta(days=400)
        db.session.commit()

        policy = dict(SETTINGS["PASSWORD_POLICY"], MAX_AGE_DAYS=0)
        with patch.dict(SETTINGS, {"PASSWORD_POLICY": policy}):
            assert evaluate_access(patient_user).allowed

    def test_mfa_setup_before_role(self, app, patient_user):
        patient_user.mfa_required = True
        db.session.commit()

        decision = evaluate_access(patient_user, ADMIN_ONLY)

        assert decision.reason == AccessReason.MFA_SETUP_REQUIRED
        assert decision.redirect_to == "/auth/mfa-setup"
        assert isinstance(decision.as_error(), MfaSetupRequired)

    def test_enabled_mfa_satisfies_the_gate(self, app, admin_user):
        admin_user.mfa_required = True
        admin_user.mfa_enabled = True
        db.session.commit()

        assert evaluate_access(admin_user, ADMIN_ONLY).allowed

    def test_gates_apply_to_every_role(self, app, superadmin_user):
        superadmin_user.change_password_required = True
        db.session.commit()

        decision = evaluate_access(superadmin_user, ADMIN_ONLY)

        assert decision.reason == AccessReason.CHANGE_PASSWORD_REQUIRED

    def test_gate_denials_are_not_audited(self, app, patient_user):
        patient_user.change_password_required = True
        db.session.commit()

        evaluate_access(patient_user, ADMIN_ONLY)

        assert SecurityAuditEvent.query.count() == 0


class TestLandingRoute:
    @pytest.mark.parametrize(
        "role,route",
        [
            ("patient", "/dashboard"),
            ("provider", "/dashboard"),
            ("admin", "/admin/dashboard"),
            ("superadmin", "/admin/dashboard"),
        ],
    )
    def test_role_landing_routes(self, role, route):
        assert landing_route(role) == route

    def test_unknown_role_lands_on_login(self):
        assert landing_route("visitor") == "/auth/login"


class TestProtectedRoutes:
    """The guard as applied to the admin API"""

    def test_anonymous_request(self, client):
        response = client.get("/api/admin/accounts/locked")

        assert response.status_code == 401
        assert response.json["error_code"] == "auth_required"
        assert response.json["redirect_to"] == "/auth/login"

    def test_wrong_role(self, client, auth_headers_patient):
        response = client.get(
            "/api/admin/accounts/locked", headers=auth_headers_patient
        )

        assert response.status_code == 403
        assert response.json["error_code"] == "role_forbidden"
        assert response.json["redirect_to"] == "/dashboard"

    def test_admin_with_pending_password_change(self, client, admin_user):
        admin_user.change_password_required = True
        db.session.commit()

        response = client.get(
            "/api/admin/accounts/locked", headers=auth_headers(admin_user)
        )

        assert response.status_code == 403
        assert response.json["error_code"] == "change_password_required"
        assert response.json["redirect_to"] == "/auth/change-password"

    def test_admin_allowed(self, client, auth_headers_admin):
        response = client.get("/api/admin/accounts/locked", headers=auth_headers_admin)

        assert response.status_code == 200


class TestAccessEndpoint:
    def test_anonymous(self, client):
        response = client.post("/api/auth/access", json={"roles": ["patient"]})

        assert response.status_code == 200
        assert response.json["data"] == {
            "allowed": False,
            "reason": "auth_required",
            "redirect_to": "/auth/login",
        }

    def test_allowed(self, client, auth_headers_patient):
        response = client.post(
            "/api/auth/access",
            json={"roles": ["patient", "provider"]},
            headers=auth_headers_patient,
        )

        assert response.json["data"]["allowed"] is True

    def test_any_signed_in_user(self, client, auth_headers_patient):
        response = client.post(
            "/api/auth/access", json={}, headers=auth_headers_patient
        )

        assert response.json["data"]["allowed"] is True

    def test_roles_must_be_a_list(self, client, auth_headers_patient):
        response = client.post(
            "/api/auth/access", json={"roles": "admin"}, headers=auth_headers_patient
        )

        assert response.status_code == 400

    def test_mfa_required_roles_setting(self, client):
        with patch.dict(SETTINGS, {"MFA_REQUIRED_ROLES": ["provider"]}):
            response = client.post(
                "/api/auth/register",
                json={
                    "email": "doc@test.com",
                    "password": "ProviderPass123!",
                    "role": "provider",
                },
            )

        assert response.status_code == 201
        user = User.query.filter_by(email="doc@test.com").one()
        assert user.mfa_required
        assert not user.mfa_enabled

        user.change_password_required = False
        db.session.commit()
        decision = evaluate_access(user)
        assert decision.reason == AccessReason.MFA_SETUP_REQUIRED
