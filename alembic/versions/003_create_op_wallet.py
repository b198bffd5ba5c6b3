"""003: create op_wallet table

Revision ID: 003
Revises: 002
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE op_wallet (
            op_id               UUID            PRIMARY KEY REFERENCES op_account (id) ON DELETE CASCADE,
            balance_credits     NUMERIC(12, 2)  NOT NULL DEFAULT 0,
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_op_wallet_balance_gte_0 CHECK (balance_credits >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_op_wallet_updated_at
            BEFORE UPDATE ON op_wallet
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON TABLE op_wallet IS 'Operator credit balance, 2 decimals';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS op_wallet CASCADE;")
