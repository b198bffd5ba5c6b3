"""WalletLedger: concrete implementation of WalletLedgerProtocol.

Balance changes are single atomic statements (conditional UPDATE / upsert
... RETURNING), so concurrent debits and credits for one operator never lose
updates. The transaction row is inserted in the same database transaction as
the balance change; a failed insert rolls the balance change back with it.

Transaction ownership: the CALLER commits or rolls back.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common import pg_errors
from src.cu_common.credits import BALANCE_TOLERANCE, ZERO, parse_credits, round_credits
from src.cu_common.datetime_utils import utc_now
from src.cu_common.enums import TxStatus
from src.cu_common.errors import (
    InsufficientCreditsError,
    StoreFailure,
    UnsupportedTransactionKindError,
    ValidationError,
    WalletNotFoundError,
)
from src.cu_wallet.domain.models import LedgerMutation, Wallet, WalletTransaction

logger = logging.getLogger(__name__)

TX_PROVIDER = "contact-unlock"

# ---------------------------------------------------------------------------
# SQL: wallet
# ---------------------------------------------------------------------------

_GET_WALLET_SQL = text("""
    SELECT op_id, balance_credits, updated_at
    FROM op_wallet
    WHERE op_id = :op_id
""")

# Lock the row, then decrement only if the result stays above the floor.
_DEBIT_SQL = text("""
    WITH prev AS (
        SELECT op_id, balance_credits
        FROM op_wallet
        WHERE op_id = :op_id
        FOR UPDATE
    )
    UPDATE op_wallet AS w
    SET balance_credits = GREATEST(ROUND(prev.balance_credits - CAST(:amount AS NUMERIC), 2), 0),
        updated_at = :now
    FROM prev
    WHERE w.op_id = prev.op_id
      AND prev.balance_credits - CAST(:amount AS NUMERIC) >= -CAST(:tolerance AS NUMERIC)
    RETURNING w.op_id, w.balance_credits, w.updated_at,
              prev.balance_credits AS previous_balance
""")

_CREDIT_SQL = text("""
    INSERT INTO op_wallet (op_id, balance_credits, updated_at)
    VALUES (:op_id, ROUND(CAST(:amount AS NUMERIC), 2), :now)
    ON CONFLICT (op_id) DO UPDATE
        SET balance_credits = ROUND(op_wallet.balance_credits + EXCLUDED.balance_credits, 2),
            updated_at = EXCLUDED.updated_at
    RETURNING op_id, balance_credits, updated_at,
              ROUND(balance_credits - CAST(:amount AS NUMERIC), 2) AS previous_balance
""")

# Compensation: add back what this saga took, leaving concurrent changes intact.
_RESTORE_SQL = text("""
    UPDATE op_wallet
    SET balance_credits = GREATEST(ROUND(balance_credits + CAST(:delta AS NUMERIC), 2), 0),
        updated_at = :now
    WHERE op_id = :op_id
    RETURNING op_id, balance_credits, updated_at
""")

# ---------------------------------------------------------------------------
# SQL: transactions
# ---------------------------------------------------------------------------

_INSERT_TX_SQL = text("""
    INSERT INTO op_wallet_tx
        (op_id, kind, status, credits, amount_eur, provider, package_code, tx_ref, settled_at)
    VALUES
        (:op_id, :kind, :status, :credits, NULL, :provider, :package_code, :tx_ref, :settled_at)
    RETURNING id, op_id, kind, status, credits, tx_ref, settled_at, package_code, provider
""")

_FIND_REPLAY_SQL = text("""
    SELECT id, op_id, kind, status, credits, tx_ref, settled_at, package_code, provider
    FROM op_wallet_tx
    WHERE op_id = :op_id
      AND tx_ref = :tx_ref
      AND kind = ANY(:kinds)
      AND settled_at >= :since
    ORDER BY settled_at DESC
    LIMIT 1
""")

_DELETE_TX_SQL = text("DELETE FROM op_wallet_tx WHERE id = :tx_id")

_LIST_TX_SQL = text("""
    SELECT id, op_id, kind, status, credits, tx_ref, settled_at, package_code, provider
    FROM op_wallet_tx
    WHERE op_id = :op_id
    ORDER BY settled_at DESC NULLS LAST, id DESC
    LIMIT :limit
""")


def _row_to_wallet(row: object) -> Wallet:
    return Wallet(
        operator_id=str(row.op_id),  # type: ignore[attr-defined]
        balance_credits=parse_credits(row.balance_credits),  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_tx(row: object) -> WalletTransaction:
    return WalletTransaction(
        id=row.id,  # type: ignore[attr-defined]
        operator_id=str(row.op_id),  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        credits=abs(parse_credits(row.credits)),  # type: ignore[attr-defined]
        tx_ref=row.tx_ref,  # type: ignore[attr-defined]
        settled_at=row.settled_at,  # type: ignore[attr-defined]
        package_code=row.package_code,  # type: ignore[attr-defined]
        provider=row.provider,  # type: ignore[attr-defined]
    )


def _positive_amount(amount: Decimal) -> Decimal:
    rounded = round_credits(amount)
    if rounded <= ZERO:
        raise ValidationError("Credit amount must be greater than zero.")
    return rounded


class WalletLedger:
    """Concrete ledger. Every balance write is atomic at the SQL level."""

    def __init__(self, replay_window_seconds: int | None = None) -> None:
        self._replay_window = (
            settings.TX_REF_REPLAY_WINDOW_SECONDS
            if replay_window_seconds is None
            else replay_window_seconds
        )

    async def get_wallet(self, db: AsyncSession, operator_id: str) -> Wallet | None:
        result = await db.execute(_GET_WALLET_SQL, {"op_id": operator_id})
        row = result.fetchone()
        return _row_to_wallet(row) if row else None

    async def get_balance(self, db: AsyncSession, operator_id: str) -> Decimal:
        """Missing wallet reads as 0."""
        wallet = await self.get_wallet(db, operator_id)
        return wallet.balance_credits if wallet else ZERO

    async def debit(
        self,
        db: AsyncSession,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
        allow_replay: bool = True,
    ) -> LedgerMutation:
        amount = _positive_amount(amount)
        now = utc_now()

        replay = (
            await self._find_replay(db, operator_id, tx_ref, kinds, now) if allow_replay else None
        )
        if replay is not None:
            logger.info(
                "Wallet debit replay: op=%s tx_ref=%s tx_id=%s", operator_id, tx_ref, replay.id
            )
            wallet = await self.get_wallet(db, operator_id) or Wallet(operator_id, ZERO)
            return LedgerMutation(wallet, replay, wallet.balance_credits, replayed=True)

        try:
            result = await db.execute(
                _DEBIT_SQL,
                {
                    "op_id": operator_id,
                    "amount": amount,
                    "tolerance": BALANCE_TOLERANCE,
                    "now": now,
                },
            )
        except DBAPIError as exc:
            raise StoreFailure("Wallet debit", str(exc.orig)) from exc
        row = result.fetchone()
        if row is None:
            wallet = await self.get_wallet(db, operator_id)
            if wallet is None:
                raise WalletNotFoundError(operator_id)
            raise InsufficientCreditsError(amount, wallet.balance_credits)

        wallet = _row_to_wallet(row)
        previous = parse_credits(row.previous_balance)
        tx = await self._insert_transaction(
            db, operator_id, kinds, amount, tx_ref, now, package_code
        )
        return LedgerMutation(wallet, tx, previous)

    async def credit(
        self,
        db: AsyncSession,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
    ) -> LedgerMutation:
        """Increase the balance; creates the wallet row on first credit."""
        amount = _positive_amount(amount)
        now = utc_now()
        try:
            result = await db.execute(
                _CREDIT_SQL, {"op_id": operator_id, "amount": amount, "now": now}
            )
        except DBAPIError as exc:
            raise StoreFailure("Wallet credit", str(exc.orig)) from exc
        row = result.fetchone()
        if row is None:
            raise StoreFailure("Wallet credit", "upsert returned no row")
        wallet = _row_to_wallet(row)
        previous = parse_credits(row.previous_balance)
        tx = await self._insert_transaction(
            db, operator_id, kinds, amount, tx_ref, now, package_code
        )
        return LedgerMutation(wallet, tx, previous)

    async def delete_transaction(self, db: AsyncSession, tx_id: int) -> bool:
        result = await db.execute(_DELETE_TX_SQL, {"tx_id": tx_id})
        return bool(result.rowcount)

    async def restore_balance(
        self,
        db: AsyncSession,
        operator_id: str,
        previous_balance: Decimal,
        debited_balance: Decimal,
    ) -> Wallet | None:
        """Put back `previous_balance - debited_balance` credits."""
        delta = round_credits(previous_balance - debited_balance)
        result = await db.execute(
            _RESTORE_SQL, {"op_id": operator_id, "delta": delta, "now": utc_now()}
        )
        row = result.fetchone()
        return _row_to_wallet(row) if row else None

    async def list_transactions(
        self, db: AsyncSession, operator_id: str, limit: int
    ) -> list[WalletTransaction]:
        result = await db.execute(_LIST_TX_SQL, {"op_id": operator_id, "limit": limit})
        return [_row_to_tx(r) for r in result.fetchall()]

    async def _find_replay(
        self,
        db: AsyncSession,
        operator_id: str,
        tx_ref: str,
        kinds: tuple[str, ...],
        now: datetime,
    ) -> WalletTransaction | None:
        if self._replay_window <= 0 or not tx_ref:
            return None
        result = await db.execute(
            _FIND_REPLAY_SQL,
            {
                "op_id": operator_id,
                "tx_ref": tx_ref,
                "kinds": list(kinds),
                "since": now - timedelta(seconds=self._replay_window),
            },
        )
        row = result.fetchone()
        return _row_to_tx(row) if row else None

    async def _insert_transaction(
        self,
        db: AsyncSession,
        operator_id: str,
        kinds: tuple[str, ...],
        amount: Decimal,
        tx_ref: str,
        settled_at: datetime,
        package_code: str | None,
    ) -> WalletTransaction:
        """Insert the log row with the first `kind` the store accepts."""
        for kind in kinds:
            try:
                async with db.begin_nested():
                    result = await db.execute(
                        _INSERT_TX_SQL,
                        {
                            "op_id": operator_id,
                            "kind": kind,
                            "status": TxStatus.SETTLED.value,
                            "credits": amount,
                            "provider": TX_PROVIDER,
                            "package_code": package_code,
                            "tx_ref": tx_ref,
                            "settled_at": settled_at,
                        },
                    )
                    row = result.fetchone()
            except DBAPIError as exc:
                if pg_errors.is_rejected_value(exc):
                    logger.warning("Wallet tx kind %s rejected by store, trying next", kind)
                    continue
                raise StoreFailure("Wallet transaction logging", str(exc.orig)) from exc
            if row is None:
                raise StoreFailure("Wallet transaction logging", "insert returned no row")
            return _row_to_tx(row)
        raise UnsupportedTransactionKindError(kinds)
