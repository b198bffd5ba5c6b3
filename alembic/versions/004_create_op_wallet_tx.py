"""004: create op_wallet_tx table

Revision ID: 004
Revises: 003
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # credits is always >= 0; the direction is carried by kind
    op.execute("""
        CREATE TABLE op_wallet_tx (
            id              BIGSERIAL       PRIMARY KEY,
            op_id           UUID            NOT NULL REFERENCES op_account (id) ON DELETE CASCADE,
            kind            VARCHAR(32)     NOT NULL,
            status          VARCHAR(16)     NOT NULL DEFAULT 'SETTLED',
            credits         NUMERIC(12, 2)  NOT NULL,
            amount_eur      NUMERIC(12, 2),
            provider        VARCHAR(64),
            package_code    VARCHAR(64),
            tx_ref          VARCHAR(128),
            settled_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_op_wallet_tx_credits_gte_0 CHECK (credits >= 0),
            CONSTRAINT ck_op_wallet_tx_kind CHECK (kind IN (
                'DEBIT_CONTACT_UNLOCK', 'CONTACT_UNLOCK',
                'ADMIN_TOPUP', 'TOPUP', 'MANUAL_TOPUP', 'CREDIT', 'MANUAL_CREDIT',
                'ADMIN_ADJUST', 'ADJUSTMENT', 'MANUAL_ADJUST', 'ADJUST',
                'DEBIT', 'MANUAL_DEBIT'
            ))
        );
    """)
    op.execute("CREATE INDEX idx_op_wallet_tx_op_settled ON op_wallet_tx (op_id, settled_at DESC);")
    op.execute("CREATE INDEX idx_op_wallet_tx_tx_ref ON op_wallet_tx (op_id, tx_ref);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS op_wallet_tx CASCADE;")
