#!/usr/bin/env python3
"""
Account Security Administration Tool

Privileged operations on account lockout and passwords for operators with
direct access to the application host and its database credentials.

SECURITY NOTICE: Superadmin accounts can only be unlocked with this tool.
Every operation is recorded in the security audit trail with the operator
name and the reason given.

Usage examples:

# Unlock a locked superadmin account
python manage_account_security.py emergency-unlock root@example.com \
    --reason "Locked out during incident 4711"

# Require a user to change their password at next login
python manage_account_security.py force-password-change user@example.com \
    --reason "Password shared over chat"

# Set a new password (prompted for), optionally forcing a change at next login
python manage_account_security.py set-password user@example.com --temporary

# List locked accounts
python manage_account_security.py list-locked
"""

import argparse
import getpass
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from hpapi import app  # noqa: E402
from hpapi.errors import (  # noqa: E402
    AuditWriteError,
    InvalidPasswordPolicy,
    NoActionNeeded,
    UserNotFound,
)
from hpapi.models.security_audit_event import AuditEventType  # noqa: E402
from hpapi.services import (  # noqa: E402
    ActorContext,
    LockoutService,
    PasswordService,
    UnlockService,
    UserService,
)
from hpapi.validators import PasswordPolicy  # noqa: E402


def emergency_unlock(email, operator, reason):
    """Unlock a superadmin account"""
    try:
        previous = UnlockService.emergency_unlock(
            email, ActorContext.operator(operator), reason
        )
    except UserNotFound:
        print(f"No superadmin account found with email '{email}'")
        return 1
    except NoActionNeeded:
        print(f"Account '{email}' is not locked. No action needed.")
        return 0
    except AuditWriteError as e:
        print(f"Unlock aborted, the audit record could not be written: {e.message}")
        return 1

    print(f"Superadmin account '{email}' unlocked by {operator}")
    print(f"  Failed attempts before unlock: {previous['failed_login_attempts']}")
    print(f"  Lock was due to expire at:     {previous['lock_expires_at'] or 'never'}")
    return 0


def force_password_change(email, operator, reason):
    """Require a password change at next login"""
    try:
        user = UserService.get_user(email)
    except UserNotFound:
        print(f"User '{email}' not found")
        return 1

    PasswordService.force_change_required(
        user, ActorContext.operator(operator), reason=reason
    )
    print(f"User '{user.email}' must change their password at next login")
    return 0


def set_password(email, operator, reason, temporary=False, generate=False):
    """Replace a user's password"""
    try:
        user = UserService.get_user(email)
    except UserNotFound:
        print(f"User '{email}' not found")
        return 1

    if generate:
        password = PasswordPolicy.from_settings().generate(12)
        temporary = True
    else:
        password = getpass.getpass("New password: ")
        if password != getpass.getpass("Repeat new password: "):
            print("Passwords do not match")
            return 1

    try:
        PasswordService.set_password(
            user,
            password,
            require_change_on_next=temporary,
            actor=ActorContext.operator(operator),
            reason=reason,
            event_type=AuditEventType.PASSWORD_SET,
        )
    except InvalidPasswordPolicy as e:
        print(f"Password rejected: {e.message}")
        return 1

    print(f"Password for '{user.email}' updated, lockout cleared")
    if generate:
        print(f"Temporary password: {password}")
    if temporary:
        print("The user must change it at next login")
    return 0


def list_locked(include_expired=False):
    """List locked accounts"""
    users = UnlockService.list_locked_accounts(include_expired=include_expired)

    if not users:
        print("No locked accounts.")
        return 0

    print(f"\nLocked Accounts ({len(users)} total)")
    print("=" * 80)
    print(f"{'Email':<36} {'Role':<11} {'Attempts':<9} {'Unlocks'}")
    print("-" * 80)

    for user in users:
        status = LockoutService.lock_status(user)
        if status["requires_manual_unlock"]:
            unlocks = "manual only"
        elif status["account_locked"]:
            unlocks = f"in {status['minutes_remaining']} min"
        else:
            unlocks = "expired"
        email = user.email[:33] + "..." if len(user.email) > 35 else user.email
        print(
            f"{email:<36} {user.role:<11} {user.failed_login_attempts:<9} {unlocks}"
        )
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="Account security administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--operator",
        default=os.getenv("SUDO_USER") or os.getenv("USER") or "unknown-operator",
        help="Name recorded as the actor in the audit trail (default: $USER)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    unlock_parser = subparsers.add_parser(
        "emergency-unlock", help="Unlock a locked superadmin account"
    )
    unlock_parser.add_argument("email")
    unlock_parser.add_argument("--reason", required=True)

    force_parser = subparsers.add_parser(
        "force-password-change", help="Require a password change at next login"
    )
    force_parser.add_argument("email")
    force_parser.add_argument("--reason", required=True)

    set_parser = subparsers.add_parser(
        "set-password", help="Set a new password and clear any lockout"
    )
    set_parser.add_argument("email")
    set_parser.add_argument("--reason", default=None)
    set_parser.add_argument(
        "--temporary",
        action="store_true",
        help="Require the user to change the password at next login",
    )
    set_parser.add_argument(
        "--generate",
        action="store_true",
        help="Generate a temporary password instead of prompting for one",
    )

    list_parser = subparsers.add_parser("list-locked", help="List locked accounts")
    list_parser.add_argument("--include-expired", action="store_true")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # Use the existing Flask app instance
    with app.app_context():
        if args.command == "emergency-unlock":
            return emergency_unlock(args.email, args.operator, args.reason)
        if args.command == "force-password-change":
            return force_password_change(args.email, args.operator, args.reason)
        if args.command == "set-password":
            return set_password(
                args.email,
                args.operator,
                args.reason,
                temporary=args.temporary,
                generate=args.generate,
            )
        return list_locked(include_expired=args.include_expired)


if __name__ == "__main__":
    sys.exit(main())
