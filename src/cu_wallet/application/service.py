"""WalletQueryService: read side of the ledger for the operator wallet page."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common.credits import ZERO, credits_to_display, credits_to_float
from src.cu_common.datetime_utils import to_iso
from src.cu_wallet.application.schemas import WalletResponse, WalletTransactionItem
from src.cu_wallet.domain.repository import WalletLedgerProtocol
from src.cu_wallet.infrastructure.ledger import WalletLedger


class WalletQueryService:
    def __init__(self, ledger: WalletLedgerProtocol | None = None) -> None:
        self._ledger: WalletLedgerProtocol = ledger or WalletLedger()

    async def get_wallet(
        self, db: AsyncSession, operator_id: str, limit: int = 20
    ) -> WalletResponse:
        wallet = await self._ledger.get_wallet(db, operator_id)
        transactions = await self._ledger.list_transactions(db, operator_id, limit)
        balance = wallet.balance_credits if wallet else ZERO
        return WalletResponse(
            operator_id=operator_id,
            balance=credits_to_float(balance) or 0.0,
            balance_display=credits_to_display(balance),
            has_wallet=wallet is not None,
            updated_at=to_iso(wallet.updated_at) if wallet else None,
            transactions=[WalletTransactionItem.from_domain(tx) for tx in transactions],
        )
