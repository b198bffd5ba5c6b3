"""UnlockApplicationService: request validation around the saga, plus the
read-side contact endpoints."""

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common.credits import credits_to_float
from src.cu_common.errors import AppError, ValidationError
from src.cu_unlock.application.contacts import ContactBundleService
from src.cu_unlock.application.saga import NotificationScheduler, UnlockSaga
from src.cu_unlock.application.schemas import (
    ContactBundle,
    ContactBundleResponse,
    UnlockedAthletesResponse,
    UnlockResponse,
    UnlockWindow,
)

logger = logging.getLogger(__name__)


def parse_athlete_id(value: Any) -> str:
    """Canonical lowercase UUID string, or ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("A valid athleteId must be provided.")
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        raise ValidationError("A valid athleteId must be provided.") from None


class UnlockApplicationService:
    def __init__(
        self,
        saga: UnlockSaga | None = None,
        contacts: ContactBundleService | None = None,
    ) -> None:
        self._saga = saga or UnlockSaga()
        self._contacts = contacts or ContactBundleService()

    async def unlock(
        self,
        db: AsyncSession,
        operator_id: str,
        raw_athlete_id: Any,
        schedule: NotificationScheduler | None = None,
    ) -> UnlockResponse:
        athlete_id = parse_athlete_id(raw_athlete_id)
        outcome = await self._saga.unlock(db, operator_id, athlete_id, schedule)

        contacts: ContactBundle | None = None
        try:
            contacts = await self._contacts.load_bundle(db, operator_id, athlete_id)
        except AppError as exc:
            logger.warning(
                "Contacts for unlock response unavailable: op=%s athlete=%s error=%s",
                operator_id,
                athlete_id,
                exc.message,
            )
        except Exception:
            logger.error(
                "Contacts for unlock response failed: op=%s athlete=%s",
                operator_id,
                athlete_id,
                exc_info=True,
            )

        return UnlockResponse(
            already_unlocked=outcome.already_unlocked,
            unlock=UnlockWindow.from_grant(outcome.grant),
            balance=credits_to_float(outcome.balance),
            contacts=contacts,
        )

    async def contacts(
        self, db: AsyncSession, operator_id: str, raw_athlete_id: Any
    ) -> ContactBundleResponse:
        athlete_id = parse_athlete_id(raw_athlete_id)
        bundle = await self._contacts.load_bundle(db, operator_id, athlete_id)
        return ContactBundleResponse(contacts=bundle)

    async def unlocked_athletes(
        self, db: AsyncSession, operator_id: str
    ) -> UnlockedAthletesResponse:
        items = await self._contacts.unlocked_athletes(db, operator_id)
        return UnlockedAthletesResponse(items=items)
