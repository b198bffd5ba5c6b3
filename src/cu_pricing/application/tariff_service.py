"""TariffAdminService: read and change the unlock tariff.

An update rewrites the currently active row in place; without an active row
a new one is inserted, effective immediately and open-ended.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common.credits import ZERO, parse_credits
from src.cu_common.datetime_utils import utc_now
from src.cu_common.errors import ValidationError
from src.cu_pricing.application.schemas import TariffResponse, TariffView
from src.cu_pricing.domain.repository import PricingRepositoryProtocol
from src.cu_pricing.infrastructure.persistence import PricingRepository

logger = logging.getLogger(__name__)


def parse_tariff_cost(value: object) -> Decimal:
    try:
        cost = parse_credits(value)
    except ValueError:
        raise ValidationError("Enter a valid non-negative credit cost.") from None
    if cost < ZERO:
        raise ValidationError("Enter a valid non-negative credit cost.")
    return cost


def parse_validity_days(value: object) -> int | None:
    """None or "" means no validity window; otherwise a whole number >= 0."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError("Enter a valid non-negative number of days or leave empty.")
    try:
        days = Decimal(str(value).strip())
    except ArithmeticError:
        raise ValidationError(
            "Enter a valid non-negative number of days or leave empty."
        ) from None
    if not days.is_finite() or days < 0:
        raise ValidationError("Enter a valid non-negative number of days or leave empty.")
    return int(days.to_integral_value())


class TariffAdminService:
    def __init__(
        self,
        repo: PricingRepositoryProtocol | None = None,
        product_code: str | None = None,
    ) -> None:
        self._repo: PricingRepositoryProtocol = repo or PricingRepository()
        self._product_code = product_code or settings.UNLOCK_PRODUCT_CODE

    async def get_tariff(self, db: AsyncSession) -> TariffResponse:
        tariff = await self._repo.find_active(db, self._product_code, utc_now())
        return TariffResponse(tariff=TariffView.from_domain(tariff) if tariff else None)

    async def update_tariff(
        self, db: AsyncSession, credits_cost: object, validity_days: object
    ) -> TariffResponse:
        cost = parse_tariff_cost(credits_cost)
        days = parse_validity_days(validity_days)
        now = utc_now()
        try:
            active = await self._repo.find_active(db, self._product_code, now)
            if active is not None and active.id is not None:
                await self._repo.update_tariff(db, active.id, cost, days)
            else:
                await self._repo.insert_tariff(db, self._product_code, cost, days, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Unlock tariff set: code=%s credits_cost=%s validity_days=%s",
            self._product_code,
            cost,
            days,
        )
        return await self.get_tariff(db)
