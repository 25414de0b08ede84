"""
Tests for password policy and input validation helpers
"""

import pytest

from hpapi.errors import InvalidPasswordPolicy
from hpapi.services import PasswordService
from hpapi.validators import (
    PasswordPolicy,
    sanitize_text,
    validate_email,
    validate_password,
    validate_role,
)


class TestPasswordPolicy:
    """Test password complexity rules"""

    @pytest.fixture
    def policy(self):
        return PasswordPolicy()

    def test_strong_password_has_no_violations(self, policy):
        assert policy.violations("StrongPass123!") == []

    @pytest.mark.parametrize(
        "password,expected",
        [
            ("Sh0rt!", "at least 10 characters"),
            ("lowercase123!", "uppercase letter"),
            ("UPPERCASE123!", "lowercase letter"),
            ("NoDigitsHere!", "digit"),
            ("NoSpecial1234", "special character"),
        ],
    )
    def test_each_rule_is_reported(self, policy, password, expected):
        problems = policy.violations(password)

        assert any(expected in problem for problem in problems)

    def test_all_violations_are_listed(self, policy):
        assert len(policy.violations("abc")) == 4

    def test_oversized_password_short_circuits(self, policy):
        problems = policy.violations("a" * 129)

        assert problems == ["Password must not exceed 128 characters"]

    def test_relaxed_policy_from_settings(self):
        policy = PasswordPolicy.from_settings(
            {"PASSWORD_POLICY": {"MIN_LENGTH": 4, "REQUIRE_SPECIAL": False}}
        )

        assert policy.violations("Ab1c") == []

    def test_generated_password_satisfies_policy(self, policy):
        for _ in range(20):
            password = policy.generate(12)
            assert len(password) == 12
            assert policy.violations(password) == []

    def test_generate_respects_min_length(self):
        policy = PasswordPolicy(min_length=16)

        assert len(policy.generate(12)) == 16


class TestCheckPolicy:
    def test_missing_password(self):
        with pytest.raises(InvalidPasswordPolicy):
            PasswordService.check_policy("")

    def test_messages_are_joined(self):
        with pytest.raises(InvalidPasswordPolicy) as exc_info:
            PasswordService.check_policy("abc")

        assert "; " in exc_info.value.message

    def test_valid_password_passes(self):
        PasswordService.check_policy("ValidPass123!")


class TestValidators:
    def test_validate_email_normalises(self):
        assert validate_email("  User@Example.COM ") == "user@example.com"

    @pytest.mark.parametrize("email", ["", None, "not-an-email", "a@b"])
    def test_validate_email_rejects(self, email):
        with pytest.raises(ValueError):
            validate_email(email)

    def test_validate_email_length_limit(self):
        with pytest.raises(ValueError, match="too long"):
            validate_email("a" * 250 + "@example.com")

    def test_validate_password(self):
        assert validate_password("ValidPass123!") == "ValidPass123!"
        with pytest.raises(ValueError):
            validate_password("weak")

    def test_validate_role(self):
        assert validate_role("provider") == "provider"
        with pytest.raises(ValueError):
            validate_role("root")

    def test_sanitize_text_strips_markup(self):
        assert sanitize_text("<b>Verified</b> by phone") == "Verified by phone"

    def test_sanitize_text_keeps_international_characters(self):
        assert sanitize_text("Vérifié par téléphone") == "Vérifié par téléphone"

    def test_sanitize_text_truncates(self):
        assert sanitize_text("x" * 600, max_length=500) == "x" * 500

    def test_sanitize_text_rejects_script_urls(self):
        with pytest.raises(ValueError):
            sanitize_text("javascript:alert(1)")

    def test_sanitize_text_passes_empty_values_through(self):
        assert sanitize_text(None) is None
        assert sanitize_text("") == ""
