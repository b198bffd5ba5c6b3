"""WalletAdminService: manual credit / debit of an operator wallet."""

import logging
import random
import time
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_admin.application.reset import normalize_operator_id
from src.cu_admin.application.schemas import WalletAdjustResponse
from src.cu_common.credits import ZERO, credits_to_float, parse_credits
from src.cu_common.enums import ADMIN_CREDIT_KINDS, ADMIN_DEBIT_KINDS, AdjustDirection
from src.cu_common.errors import InsufficientCreditsError, ValidationError
from src.cu_wallet.domain.repository import WalletLedgerProtocol
from src.cu_wallet.infrastructure.ledger import WalletLedger

logger = logging.getLogger(__name__)

ADMIN_PACKAGE_CODE = "ADMIN"


def admin_tx_ref() -> str:
    return f"ADMIN-{int(time.time() * 1000)}-{random.randint(0, 999_999):06d}"


def parse_direction(value: Any) -> AdjustDirection:
    return AdjustDirection.DEBIT if value == AdjustDirection.DEBIT.value else AdjustDirection.CREDIT


def parse_adjust_amount(value: Any) -> Decimal:
    try:
        amount = parse_credits(value)
    except ValueError:
        amount = ZERO
    if amount <= ZERO:
        raise ValidationError("A positive amount is required to update the wallet.")
    return amount


class WalletAdminService:
    def __init__(self, ledger: WalletLedgerProtocol | None = None) -> None:
        self._ledger: WalletLedgerProtocol = ledger or WalletLedger()

    async def adjust(
        self, db: AsyncSession, raw_operator_id: Any, raw_amount: Any, raw_direction: Any
    ) -> WalletAdjustResponse:
        operator_id = normalize_operator_id(raw_operator_id)
        amount = parse_adjust_amount(raw_amount)
        direction = parse_direction(raw_direction)
        tx_ref = admin_tx_ref()

        try:
            if direction is AdjustDirection.DEBIT:
                mutation = await self._ledger.debit(
                    db, operator_id, amount, tx_ref, ADMIN_DEBIT_KINDS, ADMIN_PACKAGE_CODE
                )
            else:
                mutation = await self._ledger.credit(
                    db, operator_id, amount, tx_ref, ADMIN_CREDIT_KINDS, ADMIN_PACKAGE_CODE
                )
            await db.commit()
        except InsufficientCreditsError as exc:
            await db.rollback()
            raise InsufficientCreditsError(
                exc.required,
                exc.available,
                "Unable to deduct more credits than the available balance.",
            ) from None
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Admin wallet %s: op=%s amount=%s balance=%s kind=%s tx_ref=%s",
            direction.value,
            operator_id,
            amount,
            mutation.new_balance,
            mutation.transaction.kind,
            tx_ref,
        )
        return WalletAdjustResponse(
            operator_id=operator_id,
            direction=direction.value,
            amount=credits_to_float(amount) or 0.0,
            balance=credits_to_float(mutation.new_balance) or 0.0,
            kind=mutation.transaction.kind,
            tx_ref=tx_ref,
        )
