from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_pricing.domain.models import Tariff


class PricingRepositoryProtocol(Protocol):
    async def find_active(
        self, db: AsyncSession, code: str, now: datetime
    ) -> Tariff | None: ...

    async def update_tariff(
        self,
        db: AsyncSession,
        tariff_id: int,
        credits_cost: Decimal,
        validity_days: int | None,
    ) -> None: ...

    async def insert_tariff(
        self,
        db: AsyncSession,
        code: str,
        credits_cost: Decimal,
        validity_days: int | None,
        effective_from: datetime,
    ) -> None: ...
