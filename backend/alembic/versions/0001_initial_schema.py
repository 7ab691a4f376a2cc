"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16

Creates all tables for Pulse Events:
users, events, event_rsvps, event_mutations.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_domain", "users", ["domain"])

    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("creator_user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("location_text", sa.String(500), nullable=True),
        sa.Column("campus", sa.String(255), nullable=True),
        sa.Column("is_virtual", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=True),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="company_only"),
        sa.Column("allowed_domains", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("rsvp_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_capacity_positive"),
    )
    op.create_index("ix_events_creator_user_id", "events", ["creator_user_id"])
    op.create_index("ix_events_domain", "events", ["domain"])
    op.create_index("ix_events_start_at", "events", ["start_at"])

    # --- event_rsvps ---
    op.create_table(
        "event_rsvps",
        sa.Column("rsvp_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("attended", sa.Boolean, nullable=True),
        sa.Column("waitlisted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_rsvps_event_user"),
    )
    op.create_index("ix_event_rsvps_event_id", "event_rsvps", ["event_id"])
    op.create_index("ix_event_rsvps_user_id", "event_rsvps", ["user_id"])

    # --- event_mutations ---
    op.create_table(
        "event_mutations",
        sa.Column("mutation_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("before_snapshot", sa.JSON, nullable=True),
        sa.Column("after_snapshot", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_event_mutations_event_id", "event_mutations", ["event_id"])


def downgrade() -> None:
    op.drop_table("event_mutations")
    op.drop_table("event_rsvps")
    op.drop_table("events")
    op.drop_table("users")
