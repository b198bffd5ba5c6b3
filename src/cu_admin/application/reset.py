"""UnlockResetService: revoke every grant an operator holds.

Each candidate table is swept on its own; views that refuse deletes get their
rows expired instead. The result lists what happened per table so an admin
can see which shapes were present.
"""

import logging
import math
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_admin.application.schemas import ResetUnlocksResponse
from src.cu_common.datetime_utils import utc_now
from src.cu_common.errors import ValidationError
from src.cu_unlock.domain.repository import UnlockGrantStoreProtocol
from src.cu_unlock.infrastructure.grant_store import UnlockGrantStore

logger = logging.getLogger(__name__)


def normalize_operator_id(value: Any) -> str:
    """Accept a non-empty string or a finite number, as a string id."""
    if isinstance(value, bool):
        raise ValidationError("A valid operatorId must be provided.")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValidationError("A valid operatorId must be provided.")


class UnlockResetService:
    def __init__(self, grants: UnlockGrantStoreProtocol | None = None) -> None:
        self._grants: UnlockGrantStoreProtocol = grants or UnlockGrantStore()

    async def reset(self, db: AsyncSession, raw_operator_id: Any) -> ResetUnlocksResponse:
        operator_id = normalize_operator_id(raw_operator_id)
        now = utc_now()
        try:
            result = await self._grants.void_all(db, operator_id, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        remaining = await self._grants.count_active(db, operator_id, now)
        logger.info(
            "Operator unlocks reset: op=%s removed=%d expired=%d remaining=%s",
            operator_id,
            result.removed,
            result.expired,
            remaining,
        )
        return ResetUnlocksResponse(
            cleared_unlocks=result.cleared,
            tables=[t.to_dict() for t in result.tables],
            remaining_active_unlocks=remaining,
        )
