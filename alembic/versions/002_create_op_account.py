"""002: create op_account table

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE op_account (
            id              UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            auth_user_id    VARCHAR(64)     NOT NULL,
            email           VARCHAR(255),
            first_name      VARCHAR(120),
            last_name       VARCHAR(120),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_op_account_auth_user_id UNIQUE (auth_user_id)
        );
    """)
    op.execute("COMMENT ON TABLE op_account IS 'Operator accounts, keyed to the auth provider user id';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS op_account CASCADE;")
