"""003: one in-progress lease per socket

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE UNIQUE INDEX uq_charging_sessions_socket_active
        ON charging_sessions (socket_number)
        WHERE status = 'in-progress';
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_charging_sessions_socket_active;")
