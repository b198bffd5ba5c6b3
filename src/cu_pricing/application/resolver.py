"""PricingResolver: the currently active unlock price."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common.credits import ZERO
from src.cu_common.datetime_utils import utc_now
from src.cu_common.errors import PricingUnavailableError
from src.cu_pricing.domain.models import Tariff, UnlockPrice
from src.cu_pricing.domain.repository import PricingRepositoryProtocol
from src.cu_pricing.infrastructure.persistence import PricingRepository


def normalize_validity_days(value: int | None) -> int | None:
    """A window of 0 days or less means the grant never expires."""
    if value is None or value <= 0:
        return None
    return value


def price_from_tariff(tariff: Tariff | None) -> UnlockPrice:
    if tariff is None:
        raise PricingUnavailableError("Unlock pricing is not configured.")
    if tariff.credits_cost is None or tariff.credits_cost <= ZERO:
        raise PricingUnavailableError("Unlock pricing is invalid.")
    return UnlockPrice(
        credits_cost=tariff.credits_cost,
        validity_days=normalize_validity_days(tariff.validity_days),
    )


class PricingResolver:
    def __init__(
        self,
        repo: PricingRepositoryProtocol | None = None,
        product_code: str | None = None,
    ) -> None:
        self._repo: PricingRepositoryProtocol = repo or PricingRepository()
        self._product_code = product_code or settings.UNLOCK_PRODUCT_CODE

    @property
    def product_code(self) -> str:
        return self._product_code

    async def resolve(self, db: AsyncSession, now: datetime | None = None) -> UnlockPrice:
        """Raises PricingUnavailableError when no positive active tariff exists."""
        tariff = await self._repo.find_active(db, self._product_code, now or utc_now())
        return price_from_tariff(tariff)
