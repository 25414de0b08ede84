"""HPAPI VALIDATORS"""

from dataclasses import dataclass
import datetime
from functools import wraps
import re
import secrets
import string
import unicodedata

import bleach
from flask import request

from hpapi.config import SETTINGS
from hpapi.routes.api import error
from hpapi.utils.clock import utcnow

EMAIL_REGEX = re.compile(r"^[A-Za-z0-9\.\+_-]+@[A-Za-z0-9\._-]+\.[a-zA-Z]*$")


@dataclass(frozen=True)
class PasswordPolicy:
    """Complexity rules a new password must satisfy."""

    min_length: int = 10
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True
    special_characters: str = "!@#$%^&*()_+~`|}{[]:;?><,./-="
    # Replaced passwords a change may not reuse, 0 turns the check off
    history_size: int = 3
    # Days before a password has to be changed, None never expires
    max_age_days: int | None = 90

    @classmethod
    def from_settings(cls, settings=None):
        config = (settings or SETTINGS).get("PASSWORD_POLICY", {})
        defaults = cls()
        return cls(
            min_length=config.get("MIN_LENGTH", defaults.min_length),
            max_length=config.get("MAX_LENGTH", defaults.max_length),
            require_uppercase=config.get(
                "REQUIRE_UPPERCASE", defaults.require_uppercase
            ),
            require_lowercase=config.get(
                "REQUIRE_LOWERCASE", defaults.require_lowercase
            ),
            require_digit=config.get("REQUIRE_DIGIT", defaults.require_digit),
            require_special=config.get("REQUIRE_SPECIAL", defaults.require_special),
            special_characters=config.get(
                "SPECIAL_CHARACTERS", defaults.special_characters
            ),
            history_size=config.get("HISTORY_SIZE", defaults.history_size),
            max_age_days=config.get("MAX_AGE_DAYS", defaults.max_age_days) or None,
        )

    def violations(self, password):
        """Every rule ``password`` breaks, as user-facing messages."""
        # Length ceiling first so oversized input is never scanned
        if len(password) > self.max_length:
            return [f"Password must not exceed {self.max_length} characters"]

        problems = []
        if len(password) < self.min_length:
            problems.append(f"Password must be at least {self.min_length} characters")
        if self.require_uppercase and not any(c.isupper() for c in password):
            problems.append("Password must contain at least one uppercase letter")
        if self.require_lowercase and not any(c.islower() for c in password):
            problems.append("Password must contain at least one lowercase letter")
        if self.require_digit and not any(c.isdigit() for c in password):
            problems.append("Password must contain at least one digit")
        if self.require_special and not any(
            c in self.special_characters for c in password
        ):
            problems.append("Password must contain at least one special character")
        return problems

    def expired(self, changed_at, now=None):
        """Whether a password set at ``changed_at`` is past its maximum age."""
        if not self.max_age_days or changed_at is None:
            return False
        now = now or utcnow()
        return now - changed_at > datetime.timedelta(days=self.max_age_days)

    def generate(self, length=12):
        """Random password that satisfies this policy."""
        length = max(length, self.min_length, 4)
        specials = self.special_characters or "!@#$%"
        required = [
            secrets.choice(string.ascii_uppercase),
            secrets.choice(string.ascii_lowercase),
            secrets.choice(string.digits),
            secrets.choice(specials),
        ]
        alphabet = string.ascii_letters + string.digits + specials
        chars = required + [
            secrets.choice(alphabet) for _ in range(length - len(required))
        ]
        secrets.SystemRandom().shuffle(chars)
        return "".join(chars)


def sanitize_text(text, max_length=None):
    """
    Strip markup from free text (audit reasons) while preserving international
    characters
    """
    if not text:
        return text

    text = bleach.clean(str(text).strip(), tags=[], strip=True)

    dangerous_patterns = [
        r"<script[^>]*>.*?</script>",
        r"javascript:",
        r"vbscript:",
        r"on\w+\s*=",
        r"data:text/html",
    ]

    for pattern in dangerous_patterns:
        if re.search(pattern, text, re.IGNORECASE | re.DOTALL):
            raise ValueError("Invalid content detected")

    text = unicodedata.normalize("NFC", text)

    if max_length and len(text) > max_length:
        text = text[:max_length].strip()

    return text


def validate_email(email):
    """
    Validate and normalise an email address
    """
    if not email:
        raise ValueError("Email is required")

    email = str(email).strip().lower()

    if len(email) > 254:  # RFC 5321 limit
        raise ValueError("Email address too long")

    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")

    return email


def validate_password(password, policy=None):
    """
    Check ``password`` against ``policy`` (the configured policy by default)
    and return it unchanged
    """
    if not password:
        raise ValueError("Password is required")

    policy = policy or PasswordPolicy.from_settings()
    problems = policy.violations(password)
    if problems:
        raise ValueError("; ".join(problems))

    return password


def validate_role(role):
    if role not in SETTINGS.get("ROLES", []):
        raise ValueError("Invalid role")
    return role


def validate_registration(func):
    """Registration payload validation"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = request.get_json(silent=True)
        if not json_data:
            return error(status=400, detail="Request body required")

        try:
            if "email" not in json_data:
                return error(status=400, detail="Email is required")
            if not json_data.get("password"):
                return error(status=400, detail="Password is required")

            json_data["email"] = validate_email(json_data["email"])
            json_data["role"] = validate_role(json_data.get("role", "patient"))

        except ValueError as e:
            return error(status=400, detail=str(e))

        return func(*args, **kwargs)

    return wrapper


def validate_password_change(func):
    """Password change payload validation"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = request.get_json(silent=True) or {}

        if not json_data.get("current_password") or not json_data.get("new_password"):
            return error(
                status=400, detail="current_password and new_password are required"
            )

        repeat_password = json_data.get("repeat_password")
        if repeat_password is not None and repeat_password != json_data.get(
            "new_password"
        ):
            return error(status=400, detail="Passwords do not match")

        return func(*args, **kwargs)

    return wrapper
