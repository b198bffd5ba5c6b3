"""Domain models for cu_wallet: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class Wallet:
    operator_id: str
    balance_credits: Decimal     # 2 decimals, never below 0
    updated_at: datetime | None = None


@dataclass
class WalletTransaction:
    id: int
    operator_id: str
    kind: str                    # first accepted value of the kind fallback list
    status: str
    credits: Decimal             # magnitude only; direction is implied by kind
    tx_ref: str | None = None
    settled_at: datetime | None = None
    package_code: str | None = None
    provider: str | None = None


@dataclass
class LedgerMutation:
    """Result of one Debit/Credit: the wallet after the change plus its log row."""

    wallet: Wallet
    transaction: WalletTransaction
    previous_balance: Decimal
    replayed: bool = False       # tx_ref already settled inside the replay window

    @property
    def new_balance(self) -> Decimal:
        return self.wallet.balance_credits

    @property
    def tx_id(self) -> int:
        return self.transaction.id
