"""unique_running_time_entry

Revision ID: 8d2f6e1b9c34
Revises: 5b7e0c4a1d22
Create Date: 2026-10-06 14:02:55.617390

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d2f6e1b9c34'
down_revision: Union[str, Sequence[str], None] = '5b7e0c4a1d22'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_index(
        "uq_time_entries_running",
        "time_entries",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("end_time IS NULL"),
        postgresql_where=sa.text("end_time IS NULL"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("uq_time_entries_running", table_name="time_entries")
