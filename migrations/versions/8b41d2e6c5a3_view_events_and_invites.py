"""view events, project invites

Revision ID: 8b41d2e6c5a3
Revises: 3f2a9c1d7e10
Create Date: 2026-10-17 15:40:03.551920

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8b41d2e6c5a3'
down_revision = '3f2a9c1d7e10'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "view_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_name", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("properties", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_view_events_project_id", "view_events", ["project_id"])
    op.create_index("ix_view_events_created_at", "view_events", ["created_at"])
    op.create_index("ix_view_events_project_name", "view_events", ["project_id", "event_name"])

    op.create_table(
        "project_invites",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invited_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("code"),
        sa.CheckConstraint("role IN ('admin','member','viewer')", name="ck_project_invites_role_valid"),
    )
    op.create_index("ix_project_invites_project_id", "project_invites", ["project_id"])
    op.create_index("ix_project_invites_email", "project_invites", ["email"])


def downgrade():
    op.drop_table("project_invites")
    op.drop_table("view_events")
