"""Pydantic schemas for the operator wallet view."""

from pydantic import BaseModel

from src.cu_common.credits import credits_to_float
from src.cu_common.datetime_utils import to_iso
from src.cu_wallet.domain.models import WalletTransaction


class WalletTransactionItem(BaseModel):
    id: int
    kind: str
    status: str
    credits: float
    tx_ref: str | None = None
    package_code: str | None = None
    settled_at: str | None = None

    @classmethod
    def from_domain(cls, tx: WalletTransaction) -> "WalletTransactionItem":
        return cls(
            id=tx.id,
            kind=tx.kind,
            status=tx.status,
            credits=credits_to_float(tx.credits) or 0.0,
            tx_ref=tx.tx_ref,
            package_code=tx.package_code,
            settled_at=to_iso(tx.settled_at),
        )


class WalletResponse(BaseModel):
    success: bool = True
    operator_id: str
    balance: float
    balance_display: str
    has_wallet: bool
    updated_at: str | None = None
    transactions: list[WalletTransactionItem]
