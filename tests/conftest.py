"""
Test configuration and fixtures for Health Practice API tests
"""

import os
import sys
import tempfile
from unittest.mock import patch

import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Set environment variables for testing before importing the app
os.environ["ENVIRONMENT"] = "testing"
os.environ["TESTING"] = "true"
os.environ["RATE_LIMITING_ENABLED"] = "false"

# Set minimal required environment variables for testing if not already set
if not os.environ.get("JWT_SECRET_KEY"):
    os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-ci"
if not os.environ.get("SECRET_KEY"):
    os.environ["SECRET_KEY"] = "test-secret-key-for-ci"

# The engine is built when hpapi is imported, so the database has to be chosen
# first. CI provides DATABASE_URL, local runs use a temporary SQLite file
if not os.environ.get("DATABASE_URL"):
    _db_fd, _db_path = tempfile.mkstemp(suffix=".db")
    os.close(_db_fd)
    os.environ["DATABASE_URL"] = f"sqlite:///{_db_path}"

from flask_jwt_extended import create_access_token  # noqa: E402

from hpapi import app as flask_app  # noqa: E402
from hpapi import db  # noqa: E402
from hpapi.models import User  # noqa: E402

# Strong password values for test fixtures
PATIENT_TEST_PASSWORD = "PatientPass123!"
PROVIDER_TEST_PASSWORD = "ProviderPass123!"
ADMIN_TEST_PASSWORD = "AdminPass123!"
SUPERADMIN_TEST_PASSWORD = "SuperAdmin123!"
NEW_STRONG_PASSWORD = "NewStrong123!"
WRONG_PASSWORD = "WrongPass123!"


@pytest.fixture(scope="function")
def app():
    """Application with a fresh schema.

    The app context stays pushed for the whole test, so requests made with the
    test client share the test's database session.
    """
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        try:
            yield flask_app
        finally:
            db.session.remove()
            db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Factory for users in any role and security state"""

    def _make_user(email, password=PATIENT_TEST_PASSWORD, role="patient", **fields):
        user = User(email=email, password=password, role=role)
        for key, value in fields.items():
            setattr(user, key, value)
        db.session.add(user)
        db.session.commit()
        db.session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def patient_user(make_user):
    return make_user("patient@test.com", PATIENT_TEST_PASSWORD, role="patient")


@pytest.fixture
def provider_user(make_user):
    return make_user("provider@test.com", PROVIDER_TEST_PASSWORD, role="provider")


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@test.com", ADMIN_TEST_PASSWORD, role="admin")


@pytest.fixture
def superadmin_user(make_user):
    return make_user(
        "superadmin@test.com", SUPERADMIN_TEST_PASSWORD, role="superadmin"
    )


def auth_headers(user):
    """Authorization header carrying a fresh access token for ``user``"""
    return {"Authorization": f"Bearer {create_access_token(identity=str(user.id))}"}


@pytest.fixture
def auth_headers_patient(patient_user):
    return auth_headers(patient_user)


@pytest.fixture
def auth_headers_admin(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def auth_headers_superadmin(superadmin_user):
    return auth_headers(superadmin_user)


@pytest.fixture(autouse=True)
def mock_external_services():
    """Keep email and Rollbar traffic out of the tests"""
    with (
        patch("hpapi.services.email_service.EmailService.send_html_email"),
        patch("rollbar.report_exc_info"),
        patch("rollbar.report_message"),
    ):
        yield
