from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.cu_common.credits import credits_to_float
from src.cu_common.datetime_utils import to_iso
from src.cu_pricing.domain.models import Tariff


class TariffUpdateRequest(BaseModel):
    """Raw values; parsed by the service so "4,50" and "" are accepted."""

    model_config = ConfigDict(populate_by_name=True)

    credits_cost: Any = Field(None, alias="creditsCost")
    validity_days: Any = Field(None, alias="validityDays")


class TariffView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    credits_cost: float | None = Field(None, serialization_alias="creditsCost")
    validity_days: int | None = Field(None, serialization_alias="validityDays")
    effective_from: str | None = Field(None, serialization_alias="effectiveFrom")
    effective_to: str | None = Field(None, serialization_alias="effectiveTo")
    updated_at: str | None = Field(None, serialization_alias="updatedAt")

    @classmethod
    def from_domain(cls, tariff: Tariff) -> "TariffView":
        validity = tariff.validity_days
        return cls(
            id=tariff.id,
            credits_cost=credits_to_float(tariff.credits_cost),
            validity_days=max(0, validity) if validity is not None else None,
            effective_from=to_iso(tariff.effective_from),
            effective_to=to_iso(tariff.effective_to),
            updated_at=to_iso(tariff.updated_at),
        )


class TariffResponse(BaseModel):
    success: bool = True
    tariff: TariffView | None = None
