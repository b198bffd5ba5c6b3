"""Grant store Protocol.

The saga and the reset sweep only see this interface; which physical table
and columns hold a grant is the store's business.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_unlock.domain.models import SourceOutcome, UnlockGrant, VoidResult


class UnlockGrantStoreProtocol(Protocol):
    async def find_active(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        now: datetime | None = None,
    ) -> UnlockGrant | None: ...

    async def find_latest(
        self, db: AsyncSession, operator_id: str, athlete_id: str
    ) -> UnlockGrant | None: ...

    async def list_active(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> list[UnlockGrant]: ...

    async def count_active(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> int | None: ...

    async def upsert(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        unlocked_at: datetime,
        expires_at: datetime | None,
    ) -> UnlockGrant: ...

    async def void_all(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> VoidResult: ...


class LedgerGrantReaderProtocol(Protocol):
    """Grants derived from settled unlock debits (ledger-only mode)."""

    async def find(
        self, db: AsyncSession, operator_id: str, athlete_id: str
    ) -> UnlockGrant | None: ...

    async def list_latest(
        self, db: AsyncSession, operator_id: str, limit: int
    ) -> list[UnlockGrant] | None: ...

    async def void_all(self, db: AsyncSession, operator_id: str) -> SourceOutcome: ...
