"""Pydantic schemas for the admin endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ResetUnlocksRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operator_id: Any = Field(None, alias="operatorId")


class WalletAdjustRequest(BaseModel):
    """Raw values; `amount` may be "4,50" and unknown directions mean credit."""

    model_config = ConfigDict(populate_by_name=True)

    operator_id: Any = Field(None, alias="operatorId")
    amount: Any = None
    direction: Any = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ResetUnlocksResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    cleared_unlocks: int = Field(serialization_alias="clearedUnlocks")
    tables: list[dict[str, Any]]
    remaining_active_unlocks: int | None = Field(
        None, serialization_alias="remainingActiveUnlocks"
    )


class WalletAdjustResponse(BaseModel):
    success: bool = True
    operator_id: str
    direction: str
    amount: float
    balance: float
    kind: str
    tx_ref: str
