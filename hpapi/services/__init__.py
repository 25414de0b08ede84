"""HPAPI SERVICES MODULE"""

import logging
import sys

logger = logging.getLogger()


def handle_exception(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


sys.excepthook = handle_exception

from hpapi.services.audit_service import ActorContext, AuditService  # noqa: E402
from hpapi.services.email_service import EmailService  # noqa: E402
from hpapi.services.lockout_service import (  # noqa: E402
    LockoutPolicy,
    LockoutService,
    LoginDecision,
    evaluate_attempt,
)
from hpapi.services.refresh_token_service import RefreshTokenService  # noqa: E402
from hpapi.services.password_service import PasswordService  # noqa: E402
from hpapi.services.unlock_service import UnlockService  # noqa: E402

# Import last, it depends on the lockout and password services
from hpapi.services.user_service import UserService  # noqa:E402, isort:skip

__all__ = [
    "ActorContext",
    "AuditService",
    "EmailService",
    "LockoutPolicy",
    "LockoutService",
    "LoginDecision",
    "evaluate_attempt",
    "PasswordService",
    "RefreshTokenService",
    "UnlockService",
    "UserService",
]
