"""Wallet ledger Protocol.

The saga and the admin services depend on this; unit tests inject an
in-memory fake, production uses WalletLedger.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_wallet.domain.models import LedgerMutation, Wallet, WalletTransaction


class WalletLedgerProtocol(Protocol):
    async def get_wallet(self, db: AsyncSession, operator_id: str) -> Wallet | None: ...

    async def get_balance(self, db: AsyncSession, operator_id: str) -> Decimal: ...

    async def debit(
        self,
        db: AsyncSession,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
        allow_replay: bool = True,
    ) -> LedgerMutation: ...

    async def credit(
        self,
        db: AsyncSession,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
    ) -> LedgerMutation: ...

    async def delete_transaction(self, db: AsyncSession, tx_id: int) -> bool: ...

    async def restore_balance(
        self,
        db: AsyncSession,
        operator_id: str,
        previous_balance: Decimal,
        debited_balance: Decimal,
    ) -> Wallet | None: ...

    async def list_transactions(
        self, db: AsyncSession, operator_id: str, limit: int
    ) -> list[WalletTransaction]: ...
