"""PricingRepository: raw SQL over the `pricing` table.

The modification-timestamp column is `updated_at` on current schemas,
`pricing_updated_at` on older ones, and absent on the oldest. Reads try each
in that order and remember the first that works.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common import pg_errors
from src.cu_common.credits import parse_credits
from src.cu_common.errors import StoreFailure
from src.cu_pricing.domain.models import Tariff

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMNS: tuple[str | None, ...] = ("updated_at", "pricing_updated_at", None)

_ACTIVE_TARIFF_SQL = """
    SELECT id, code, credits_cost, validity_days, effective_from, effective_to,
           {timestamp} AS updated_at
    FROM pricing
    WHERE code = :code
      AND effective_from <= :now
      AND (effective_to IS NULL OR effective_to >= :now)
    ORDER BY effective_from DESC NULLS LAST
    LIMIT 1
"""

_UPDATE_TARIFF_SQL = text("""
    UPDATE pricing
    SET credits_cost = :credits_cost,
        validity_days = :validity_days
    WHERE id = :id
""")

_INSERT_TARIFF_SQL = text("""
    INSERT INTO pricing (code, credits_cost, validity_days, effective_from, effective_to)
    VALUES (:code, :credits_cost, :validity_days, :effective_from, NULL)
""")


def _row_to_tariff(row: object) -> Tariff:
    cost = row.credits_cost  # type: ignore[attr-defined]
    validity = row.validity_days  # type: ignore[attr-defined]
    try:
        credits_cost = parse_credits(cost) if cost is not None else None
    except ValueError:
        credits_cost = None
    return Tariff(
        id=row.id,  # type: ignore[attr-defined]
        code=row.code,  # type: ignore[attr-defined]
        credits_cost=credits_cost,
        validity_days=int(validity) if validity is not None else None,
        effective_from=row.effective_from,  # type: ignore[attr-defined]
        effective_to=row.effective_to,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class PricingRepository:
    def __init__(self) -> None:
        self._timestamp_column: str | None = None
        self._timestamp_resolved = False

    def _attempts(self) -> tuple[str | None, ...]:
        if self._timestamp_resolved:
            return (self._timestamp_column,)
        return TIMESTAMP_COLUMNS

    async def find_active(
        self, db: AsyncSession, code: str, now: datetime
    ) -> Tariff | None:
        for column in self._attempts():
            sql = text(_ACTIVE_TARIFF_SQL.format(timestamp=column or "NULL"))
            try:
                async with db.begin_nested():
                    result = await db.execute(sql, {"code": code, "now": now})
                    row = result.fetchone()
            except DBAPIError as exc:
                if pg_errors.is_column_missing(exc) and column is not None:
                    logger.warning("pricing.%s missing, trying next timestamp column", column)
                    continue
                raise StoreFailure("Unlock pricing lookup", str(exc.orig)) from exc
            self._timestamp_column = column
            self._timestamp_resolved = True
            return _row_to_tariff(row) if row else None
        raise StoreFailure("Unlock pricing lookup", "no readable pricing shape")

    async def update_tariff(
        self,
        db: AsyncSession,
        tariff_id: int,
        credits_cost: Decimal,
        validity_days: int | None,
    ) -> None:
        try:
            await db.execute(
                _UPDATE_TARIFF_SQL,
                {"id": tariff_id, "credits_cost": credits_cost, "validity_days": validity_days},
            )
        except DBAPIError as exc:
            raise StoreFailure("Unlock tariff update", str(exc.orig)) from exc

    async def insert_tariff(
        self,
        db: AsyncSession,
        code: str,
        credits_cost: Decimal,
        validity_days: int | None,
        effective_from: datetime,
    ) -> None:
        try:
            await db.execute(
                _INSERT_TARIFF_SQL,
                {
                    "code": code,
                    "credits_cost": credits_cost,
                    "validity_days": validity_days,
                    "effective_from": effective_from,
                },
            )
        except DBAPIError as exc:
            raise StoreFailure("Unlock tariff creation", str(exc.orig)) from exc
