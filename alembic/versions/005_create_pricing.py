"""005: create pricing table and seed the unlock tariff

Revision ID: 005
Revises: 004
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE pricing (
            id              BIGSERIAL       PRIMARY KEY,
            code            VARCHAR(64)     NOT NULL,
            credits_cost    NUMERIC(12, 2)  NOT NULL,
            validity_days   INTEGER,
            effective_from  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            effective_to    TIMESTAMPTZ,
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_pricing_credits_cost_gte_0 CHECK (credits_cost >= 0),
            CONSTRAINT ck_pricing_validity_days_gte_0 CHECK (validity_days IS NULL OR validity_days >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_pricing_code_effective ON pricing (code, effective_from DESC);")
    op.execute("""
        CREATE TRIGGER trg_pricing_updated_at
            BEFORE UPDATE ON pricing
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("""
        INSERT INTO pricing (code, credits_cost, validity_days)
        VALUES ('UNLOCK_CONTACTS', 1.00, 30);
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS pricing CASCADE;")
