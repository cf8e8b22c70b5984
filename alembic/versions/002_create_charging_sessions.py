"""002: create charging_sessions table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE charging_sessions (
            id                  UUID        PRIMARY KEY DEFAULT gen_random_uuid(),
            holder_id           VARCHAR(64) NOT NULL REFERENCES accounts (holder_id),
            points_reserved     INT         NOT NULL,
            socket_class        VARCHAR(32) NOT NULL,
            socket_number       SMALLINT    NOT NULL,
            start_time          TIMESTAMPTZ NOT NULL,
            expected_end_time   TIMESTAMPTZ NOT NULL,
            actual_end_time     TIMESTAMPTZ,
            status              VARCHAR(20) NOT NULL DEFAULT 'in-progress',
            duration_seconds    INT,
            refunded_points     INT,
            points_used_actual  INT,
            remaining_points    BIGINT,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_sessions_points_reserved_gt_0 CHECK (points_reserved > 0),
            CONSTRAINT ck_sessions_socket_class CHECK (
                socket_class IN ('Universal Charger', 'Own Charger')
            ),
            CONSTRAINT ck_sessions_status CHECK (
                status IN ('in-progress', 'completed', 'cancelled')
            ),
            CONSTRAINT ck_sessions_refund_range CHECK (
                refunded_points IS NULL
                OR (refunded_points > 0 AND refunded_points <= points_reserved)
            ),
            CONSTRAINT ck_sessions_expected_end CHECK (expected_end_time >= start_time),
            CONSTRAINT ck_sessions_terminal_fields CHECK (
                (status = 'in-progress' AND actual_end_time IS NULL)
                OR (status <> 'in-progress' AND actual_end_time IS NOT NULL
                    AND duration_seconds IS NOT NULL)
            )
        );
    """)
    # At most one in-progress lease per holder
    op.execute("""
        CREATE UNIQUE INDEX uq_charging_sessions_holder_active
        ON charging_sessions (holder_id)
        WHERE status = 'in-progress';
    """)
    op.execute("""
        CREATE INDEX idx_charging_sessions_holder_created
        ON charging_sessions (holder_id, created_at DESC);
    """)
    op.execute("""
        CREATE TRIGGER trg_charging_sessions_updated_at
            BEFORE UPDATE ON charging_sessions
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute(
        "COMMENT ON TABLE charging_sessions IS"
        " 'Socket leases; terminal rows are immutable history';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS charging_sessions CASCADE;")
