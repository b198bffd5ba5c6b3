"""Domain models for cu_pricing."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class Tariff:
    """One row of the pricing table."""

    id: int | None
    code: str
    credits_cost: Decimal | None
    validity_days: int | None
    effective_from: datetime | None = None
    effective_to: datetime | None = None
    updated_at: datetime | None = None  # None when the deployment has no timestamp column


@dataclass(frozen=True)
class UnlockPrice:
    credits_cost: Decimal        # > 0, 2 decimals
    validity_days: int | None    # None = grants never expire
