"""create_time_entries_and_settings

Revision ID: 5b7e0c4a1d22
Revises: 3f1c2a9d8b10
Create Date: 2026-10-05 09:31:07.880173

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b7e0c4a1d22'
down_revision: Union[str, Sequence[str], None] = '3f1c2a9d8b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "time_entries",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column(
            "project_id",
            sa.String(),
            sa.ForeignKey("projects.id", name="fk_time_entries_project_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "milestone_id",
            sa.String(),
            sa.ForeignKey("milestones.id", name="fk_time_entries_milestone_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("hourly_rate", sa.Integer(), nullable=True),
        sa.Column("billable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invoice_id", sa.String(), nullable=True),
        sa.Column("entry_type", sa.String(), nullable=False, server_default="tracked"),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("locked_reason", sa.String(), nullable=True),
        sa.Column("auto_stopped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_stop_reason", sa.String(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("original_start_time", sa.DateTime(), nullable=True),
        sa.Column("original_end_time", sa.DateTime(), nullable=True),
        sa.Column("original_duration", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("entry_type IN ('tracked', 'manual')", name="ck_time_entries_entry_type"),
        sa.CheckConstraint("duration IS NULL OR duration >= 0", name="ck_time_entries_duration_nonnegative"),
        sa.CheckConstraint("hourly_rate IS NULL OR hourly_rate >= 0", name="ck_time_entries_rate_nonnegative"),
    )
    op.create_index("ix_time_entries_id", "time_entries", ["id"], unique=False)
    op.create_index("ix_time_entries_user_id", "time_entries", ["user_id"], unique=False)
    op.create_index("ix_time_entries_project_id", "time_entries", ["project_id"], unique=False)
    op.create_index("ix_time_entries_start_time", "time_entries", ["start_time"], unique=False)
    op.create_index("ix_time_entries_invoice_id", "time_entries", ["invoice_id"], unique=False)
    op.create_index("ix_time_entries_user_start", "time_entries", ["user_id", "start_time"], unique=False)

    op.create_table(
        "time_tracking_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("default_hourly_rate", sa.Integer(), nullable=True),
        sa.Column("max_retroactive_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("daily_hour_warning", sa.Integer(), nullable=False, server_default="720"),
        sa.Column("idle_timeout_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("round_to_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minimum_entry_minutes", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("allow_overlapping", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("client_visible_logs", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("require_description", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_stop_at_midnight", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("business_timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_time_tracking_settings_id", "time_tracking_settings", ["id"], unique=False)
    op.create_index("ix_time_tracking_settings_user_id", "time_tracking_settings", ["user_id"], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_time_tracking_settings_user_id", table_name="time_tracking_settings")
    op.drop_index("ix_time_tracking_settings_id", table_name="time_tracking_settings")
    op.drop_table("time_tracking_settings")

    op.drop_index("ix_time_entries_user_start", table_name="time_entries")
    op.drop_index("ix_time_entries_invoice_id", table_name="time_entries")
    op.drop_index("ix_time_entries_start_time", table_name="time_entries")
    op.drop_index("ix_time_entries_project_id", table_name="time_entries")
    op.drop_index("ix_time_entries_user_id", table_name="time_entries")
    op.drop_index("ix_time_entries_id", table_name="time_entries")
    op.drop_table("time_entries")
