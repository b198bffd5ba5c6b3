"""cu_wallet REST API: the operator's own wallet."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common.database import get_db_session
from src.cu_gateway.auth.dependencies import get_current_operator
from src.cu_gateway.operator.db_models import OperatorAccountModel
from src.cu_wallet.application.schemas import WalletResponse
from src.cu_wallet.application.service import WalletQueryService

router = APIRouter(prefix="/operator", tags=["wallet"])

_service = WalletQueryService()


@router.get("/wallet")
async def get_wallet(
    operator: Annotated[OperatorAccountModel, Depends(get_current_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    limit: int = Query(20, ge=1, le=100, description="Recent transactions to include"),
) -> WalletResponse:
    return await _service.get_wallet(db, str(operator.id), limit)
