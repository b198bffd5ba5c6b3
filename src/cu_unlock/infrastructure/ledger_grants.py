"""LedgerGrantReader: unlock grants evidenced only by the wallet ledger.

When no grant table accepts writes, a settled unlock debit in op_wallet_tx is
the record of the purchase. Its `tx_ref` names the athlete, `settled_at` is
the unlock time, and the expiry comes from the tariff that was effective when
the debit settled.

Resetting an operator re-tags their unlock debits (`reset:unlock:athlete:...`)
so they stop counting as grants; the rows themselves are never deleted.
"""

import logging
from datetime import datetime

from sqlalchemy import TextClause, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common.datetime_utils import add_days, ensure_utc
from src.cu_common.enums import UNLOCK_DEBIT_KINDS, TxStatus
from src.cu_common.errors import StoreFailure
from src.cu_pricing.application.resolver import normalize_validity_days
from src.cu_schema.prober import ProbeResult, classify
from src.cu_unlock.domain.models import (
    UNLOCK_TX_REF_PREFIX,
    SourceOutcome,
    UnlockGrant,
    athlete_from_tx_ref,
    unlock_tx_ref,
)

logger = logging.getLogger(__name__)

LEDGER_TABLE = "op_wallet_tx"
RESET_TAG = "reset:"

_UNLOCK_DEBITS_SQL = """
    SELECT t.op_id::text AS operator_id,
           t.tx_ref,
           t.settled_at,
           p.validity_days
    FROM op_wallet_tx t
    LEFT JOIN LATERAL (
        SELECT validity_days
        FROM pricing
        WHERE code = COALESCE(t.package_code, :product_code)
          AND effective_from <= t.settled_at
          AND (effective_to IS NULL OR effective_to >= t.settled_at)
        ORDER BY effective_from DESC NULLS LAST
        LIMIT 1
    ) p ON TRUE
    WHERE t.op_id::text = :operator_id
      AND t.kind = ANY(:kinds)
      AND t.status = :status
      AND {ref_filter}
    ORDER BY t.settled_at DESC
    LIMIT :limit
"""

_PAIR_DEBITS_SQL = text(_UNLOCK_DEBITS_SQL.format(ref_filter="t.tx_ref = :tx_ref"))
_OPERATOR_DEBITS_SQL = text(_UNLOCK_DEBITS_SQL.format(ref_filter="t.tx_ref LIKE :pattern"))

_RETAG_SQL = text("""
    UPDATE op_wallet_tx
    SET tx_ref = :tag || tx_ref
    WHERE op_id::text = :operator_id
      AND kind = ANY(:kinds)
      AND tx_ref LIKE :pattern
""")


def grant_from_debit(
    operator_id: str,
    athlete_id: str,
    settled_at: datetime | None,
    validity_days: int | None,
) -> UnlockGrant:
    """A ledger-only grant: unlocked when the debit settled, same window as the tariff."""
    unlocked_at = ensure_utc(settled_at)
    days = normalize_validity_days(validity_days)
    expires_at = add_days(unlocked_at, days) if unlocked_at is not None else None
    return UnlockGrant(operator_id, athlete_id, unlocked_at, expires_at, source=None)


class LedgerGrantReader:
    def __init__(self, product_code: str | None = None) -> None:
        self._product_code = product_code or settings.UNLOCK_PRODUCT_CODE

    def _params(self, operator_id: str, limit: int) -> dict[str, object]:
        return {
            "operator_id": operator_id,
            "kinds": list(UNLOCK_DEBIT_KINDS),
            "status": TxStatus.SETTLED.value,
            "product_code": self._product_code,
            "limit": limit,
        }

    async def _grants(
        self, db: AsyncSession, sql: TextClause, params: dict[str, object]
    ) -> list[UnlockGrant] | None:
        """Newest first. None when the ledger cannot be read at all."""
        try:
            async with db.begin_nested():
                result = await db.execute(sql, params)
                rows = result.fetchall()
        except DBAPIError as exc:
            verdict = classify(exc)
            if verdict is None:
                raise StoreFailure("Ledger unlock lookup", str(exc.orig)) from exc
            logger.warning("Ledger unlock lookup unavailable: %s", verdict.value)
            return None

        grants: list[UnlockGrant] = []
        for row in rows:
            athlete_id = athlete_from_tx_ref(row.tx_ref)
            if athlete_id is None:
                continue
            validity = row.validity_days
            grants.append(
                grant_from_debit(
                    str(row.operator_id),
                    athlete_id,
                    row.settled_at,
                    int(validity) if validity is not None else None,
                )
            )
        return grants

    async def find(
        self, db: AsyncSession, operator_id: str, athlete_id: str
    ) -> UnlockGrant | None:
        params = self._params(operator_id, limit=1)
        params["tx_ref"] = unlock_tx_ref(athlete_id)
        grants = await self._grants(db, _PAIR_DEBITS_SQL, params)
        return grants[0] if grants else None

    async def list_latest(
        self, db: AsyncSession, operator_id: str, limit: int
    ) -> list[UnlockGrant] | None:
        """The newest debit per athlete."""
        params = self._params(operator_id, limit)
        params["pattern"] = f"{UNLOCK_TX_REF_PREFIX}%"
        grants = await self._grants(db, _OPERATOR_DEBITS_SQL, params)
        if grants is None:
            return None
        latest: dict[str, UnlockGrant] = {}
        for grant in grants:
            latest.setdefault(grant.athlete_id, grant)
        return list(latest.values())

    async def void_all(self, db: AsyncSession, operator_id: str) -> SourceOutcome:
        outcome = SourceOutcome(table=LEDGER_TABLE, column="tx_ref")
        params = {
            "operator_id": operator_id,
            "kinds": list(UNLOCK_DEBIT_KINDS),
            "pattern": f"{UNLOCK_TX_REF_PREFIX}%",
            "tag": RESET_TAG,
        }
        try:
            async with db.begin_nested():
                result = await db.execute(_RETAG_SQL, params)
        except DBAPIError as exc:
            verdict = classify(exc)
            if verdict is None:
                raise StoreFailure("Operator unlock reset (ledger)", str(exc.orig)) from exc
            outcome.skipped = True
            outcome.reason = (
                "immutable_view" if verdict is ProbeResult.READ_ONLY else verdict.value
            )
            return outcome
        outcome.attempted = True
        outcome.expired = int(result.rowcount or 0)
        logger.info(
            "Ledger-only unlocks voided: op=%s debits=%d", operator_id, outcome.expired
        )
        return outcome
