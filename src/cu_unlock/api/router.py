"""cu_unlock REST API: unlock an athlete, read contacts, list unlocked athletes.

All endpoints require an operator account behind the bearer token.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common.database import get_db_session
from src.cu_gateway.auth.dependencies import get_current_operator
from src.cu_gateway.operator.db_models import OperatorAccountModel
from src.cu_notify.dispatcher import get_dispatcher
from src.cu_notify.templates import EmailMessage
from src.cu_unlock.application.schemas import (
    ContactBundleResponse,
    UnlockedAthletesResponse,
    UnlockRequest,
    UnlockResponse,
)
from src.cu_unlock.application.service import UnlockApplicationService

router = APIRouter(prefix="/operator", tags=["unlock"])

_service = UnlockApplicationService()


@router.post("/unlock-contacts")
async def unlock_contacts(
    body: UnlockRequest,
    background_tasks: BackgroundTasks,
    operator: Annotated[OperatorAccountModel, Depends(get_current_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> UnlockResponse:
    dispatcher = get_dispatcher()

    def schedule(messages: list[EmailMessage]) -> None:
        if messages:
            background_tasks.add_task(dispatcher.dispatch_all, messages)

    return await _service.unlock(db, str(operator.id), body.athlete_id, schedule)


@router.get("/athlete-contacts/{athlete_id}")
async def athlete_contacts(
    athlete_id: str,
    operator: Annotated[OperatorAccountModel, Depends(get_current_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ContactBundleResponse:
    return await _service.contacts(db, str(operator.id), athlete_id)


@router.get("/unlocked-athletes")
async def unlocked_athletes(
    operator: Annotated[OperatorAccountModel, Depends(get_current_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> UnlockedAthletesResponse:
    return await _service.unlocked_athletes(db, str(operator.id))
