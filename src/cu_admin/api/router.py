"""Admin REST API: unlock reset, wallet adjustment, unlock tariff."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_admin.application.reset import UnlockResetService
from src.cu_admin.application.schemas import (
    ResetUnlocksRequest,
    ResetUnlocksResponse,
    WalletAdjustRequest,
    WalletAdjustResponse,
)
from src.cu_admin.application.wallet_admin import WalletAdminService
from src.cu_common.database import get_db_session
from src.cu_gateway.auth.dependencies import Principal, require_admin
from src.cu_pricing.application.schemas import TariffResponse, TariffUpdateRequest
from src.cu_pricing.application.tariff_service import TariffAdminService

router = APIRouter(prefix="/admin", tags=["admin"])

_reset_service = UnlockResetService()
_wallet_service = WalletAdminService()
_tariff_service = TariffAdminService()


@router.post("/operator-unlocks/reset")
async def reset_operator_unlocks(
    body: ResetUnlocksRequest,
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ResetUnlocksResponse:
    return await _reset_service.reset(db, body.operator_id)


@router.post("/operator-wallet")
async def adjust_operator_wallet(
    body: WalletAdjustRequest,
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> WalletAdjustResponse:
    return await _wallet_service.adjust(db, body.operator_id, body.amount, body.direction)


@router.get("/unlock-tariff")
async def get_unlock_tariff(
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> TariffResponse:
    return await _tariff_service.get_tariff(db)


@router.post("/unlock-tariff")
async def update_unlock_tariff(
    body: TariffUpdateRequest,
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> TariffResponse:
    return await _tariff_service.update_tariff(db, body.credits_cost, body.validity_days)
