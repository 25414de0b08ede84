"""Password history

Revision ID: b7d2f9a4c813
Revises: a1c4e7f20b31
Create Date: 2026-10-19 00:00:00.000000

Keeps the hashes of replaced passwords so a change can refuse a recently
used one.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "b7d2f9a4c813"
down_revision = "a1c4e7f20b31"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "password_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_password_history_user_id", "password_history", ["user_id"]
    )


def downgrade():
    op.drop_index("ix_password_history_user_id", table_name="password_history")
    op.drop_table("password_history")
