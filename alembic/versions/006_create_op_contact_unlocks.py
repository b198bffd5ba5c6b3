"""006: create op_contact_unlocks table and its read views

Revision ID: 006
Revises: 005
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE op_contact_unlocks (
            id              BIGSERIAL       PRIMARY KEY,
            op_id           UUID            NOT NULL REFERENCES op_account (id) ON DELETE CASCADE,
            athlete_id      UUID            NOT NULL,
            unlocked_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            expires_at      TIMESTAMPTZ,
            CONSTRAINT uq_op_contact_unlocks_pair UNIQUE (op_id, athlete_id)
        );
    """)
    op.execute("CREATE INDEX idx_op_contact_unlocks_op_expires ON op_contact_unlocks (op_id, expires_at);")
    # expires_at NULL = never expires
    op.execute("""
        CREATE VIEW v_op_unlocks AS
            SELECT op_id, athlete_id, unlocked_at, expires_at
            FROM op_contact_unlocks;
    """)
    op.execute("""
        CREATE VIEW v_op_unlocks_active AS
            SELECT op_id, athlete_id, unlocked_at, expires_at
            FROM op_contact_unlocks
            WHERE expires_at IS NULL OR expires_at > NOW();
    """)


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS v_op_unlocks_active;")
    op.execute("DROP VIEW IF EXISTS v_op_unlocks;")
    op.execute("DROP TABLE IF EXISTS op_contact_unlocks CASCADE;")
