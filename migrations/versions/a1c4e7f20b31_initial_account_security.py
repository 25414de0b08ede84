"""Initial account security schema

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-09-28 00:00:00.000000

Creates the user table with its lockout, forced password change and MFA
gate columns, plus the tables that hang off it: password reset tokens,
refresh tokens and the security audit trail.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1c4e7f20b31"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("password", sa.String(length=256), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("password_last_changed", sa.DateTime(), nullable=True),
        sa.Column(
            "failed_login_attempts",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("last_failed_login", sa.DateTime(), nullable=True),
        sa.Column(
            "account_locked", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("lock_expires_at", sa.DateTime(), nullable=True),
        sa.Column(
            "change_password_required",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "mfa_required", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.PrimaryKeyConstraint("id"),
        # A lock is either indefinite or has an expiry; an unlocked record
        # carries no expiry
        sa.CheckConstraint(
            "account_locked OR lock_expires_at IS NULL",
            name="ck_user_lock_expiry_requires_lock",
        ),
        sa.CheckConstraint(
            "failed_login_attempts >= 0",
            name="ck_user_failed_login_attempts_non_negative",
        ),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)
    op.create_index(
        "ix_user_account_locked",
        "user",
        ["account_locked"],
        postgresql_where=sa.text("account_locked"),
    )

    op.create_table(
        "password_reset_token",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_password_reset_token_token_hash",
        "password_reset_token",
        ["token_hash"],
        unique=True,
    )
    op.create_index(
        "ix_password_reset_token_user_id", "password_reset_token", ["user_id"]
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("device_info", sa.String(length=500), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token", name="refresh_tokens_token_key"),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_token", "refresh_tokens", ["token"])
    op.create_index("ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"])

    # No foreign key on user_id: the audit trail outlives deleted users
    op.create_table(
        "security_audit_event",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_email", sa.String(length=254), nullable=True),
        sa.Column("user_role", sa.String(length=16), nullable=True),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_email", sa.String(length=254), nullable=True),
        sa.Column("actor_source", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_security_audit_event_created_at", "security_audit_event", ["created_at"]
    )
    op.create_index(
        "ix_security_audit_event_event_type", "security_audit_event", ["event_type"]
    )
    op.create_index(
        "ix_security_audit_event_user_id", "security_audit_event", ["user_id"]
    )


def downgrade():
    op.drop_index("ix_security_audit_event_user_id", table_name="security_audit_event")
    op.drop_index(
        "ix_security_audit_event_event_type", table_name="security_audit_event"
    )
    op.drop_index(
        "ix_security_audit_event_created_at", table_name="security_audit_event"
    )
    op.drop_table("security_audit_event")

    op.drop_index("ix_refresh_tokens_expires_at", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_token", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_user_id", table_name="refresh_tokens")
    op.drop_table("refresh_tokens")

    op.drop_index("ix_password_reset_token_user_id", table_name="password_reset_token")
    op.drop_index(
        "ix_password_reset_token_token_hash", table_name="password_reset_token"
    )
    op.drop_table("password_reset_token")

    op.drop_index("ix_user_account_locked", table_name="user")
    op.drop_index("ix_user_email", table_name="user")
    op.drop_table("user")
