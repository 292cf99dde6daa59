"""time_entry_edits_append_only

Revision ID: a4c8d3f2e156
Revises: 8d2f6e1b9c34
Create Date: 2026-10-07 10:48:19.093652

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from app.services.audit_immutability import DROP_DDL, INSTALL_DDL


# revision identifiers, used by Alembic.
revision: str = 'a4c8d3f2e156'
down_revision: Union[str, Sequence[str], None] = '8d2f6e1b9c34'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "time_entry_edits",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("time_entry_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("edited_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("field", sa.String(), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
    )
    op.create_index("ix_time_entry_edits_id", "time_entry_edits", ["id"], unique=False)
    op.create_index("ix_time_entry_edits_time_entry_id", "time_entry_edits", ["time_entry_id"], unique=False)
    op.create_index("ix_time_entry_edits_user_id", "time_entry_edits", ["user_id"], unique=False)

    if op.get_bind().dialect.name == "postgresql":
        op.execute(INSTALL_DDL)


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name == "postgresql":
        op.execute(DROP_DDL)

    op.drop_index("ix_time_entry_edits_user_id", table_name="time_entry_edits")
    op.drop_index("ix_time_entry_edits_time_entry_id", table_name="time_entry_edits")
    op.drop_index("ix_time_entry_edits_id", table_name="time_entry_edits")
    op.drop_table("time_entry_edits")
