"""UnlockGrantStore: grant persistence over drifting physical schemas.

Every method walks the candidate catalog in priority order, asks the
SchemaProber which (table, column) combination a candidate resolves to, and
runs its statement inside a SAVEPOINT so a schema miss never poisons the
caller's transaction. Callers only ever see UnlockGrant values.

Reads prefer the derived views; writes go to tables only. When no table
accepts a grant the store degrades to ledger-only mode: the returned grant
has `source=None` and the debit transaction is the proof of purchase. In
that mode reads fall back to LedgerGrantReader and the reset sweep re-tags
the operator's unlock debits.

Transaction ownership: the CALLER commits or rolls back.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common import pg_errors
from src.cu_common.datetime_utils import ensure_utc, utc_now
from src.cu_common.errors import StoreFailure
from src.cu_schema.catalog import (
    ACTIVE_GRANTS_VIEW,
    GRANT_FIELDS,
    OPTIONAL_GRANT_FIELDS,
    OPTIONAL_RESET_FIELDS,
    READ_SOURCES,
    RESET_FIELDS,
    SWEEP_SOURCES,
    TABLE_SOURCES,
    CandidateSource,
    GrantSource,
)
from src.cu_schema.prober import ProbeResult, SchemaProber, classify, get_schema_prober
from src.cu_unlock.domain.models import SourceOutcome, UnlockGrant, VoidResult
from src.cu_unlock.domain.repository import LedgerGrantReaderProtocol
from src.cu_unlock.infrastructure import grant_sql
from src.cu_unlock.infrastructure.ledger_grants import LedgerGrantReader

logger = logging.getLogger(__name__)

LIST_LIMIT = 500

# Back-dated expiry used when a row can only be expired, not deleted.
_EXPIRE_OFFSET = timedelta(seconds=1)


def _row_to_grant(row: object, source: str) -> UnlockGrant:
    return UnlockGrant(
        operator_id=str(row.operator_id),  # type: ignore[attr-defined]
        athlete_id=str(row.athlete_id),  # type: ignore[attr-defined]
        unlocked_at=ensure_utc(row.unlocked_at),  # type: ignore[attr-defined]
        expires_at=ensure_utc(row.expires_at),  # type: ignore[attr-defined]
        source=source,
    )


class UnlockGrantStore:
    def __init__(
        self,
        prober: SchemaProber | None = None,
        ledger_grants: LedgerGrantReaderProtocol | None = None,
    ) -> None:
        self._prober = prober or get_schema_prober()
        self._ledger: LedgerGrantReaderProtocol = ledger_grants or LedgerGrantReader()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self, db: AsyncSession, candidate: CandidateSource) -> GrantSource | None:
        resolution = await self._prober.resolve_columns(
            db, candidate.name, GRANT_FIELDS, OPTIONAL_GRANT_FIELDS
        )
        if not resolution.ok:
            return None
        columns = resolution.columns
        return GrantSource(
            table=candidate.name,
            kind=candidate.kind,
            operator_col=columns["operator"] or "",
            athlete_col=columns["athlete"] or "",
            unlocked_col=columns.get("unlocked_at"),
            expiry_col=columns.get("expires_at"),
        )

    async def _run(
        self, db: AsyncSession, sql: str, params: Mapping[str, Any], operation: str
    ) -> tuple[Any, ProbeResult | None]:
        """Execute in a savepoint. Returns (result, None) or (None, schema verdict).

        Rows are fetched inside the savepoint; `result` is a list of rows for
        SELECTs and the rowcount otherwise. Non-schema errors become StoreFailure.
        """
        try:
            async with db.begin_nested():
                result = await db.execute(text(sql), dict(params))
                if result.returns_rows:
                    return result.fetchall(), None
                return result.rowcount, None
        except DBAPIError as exc:
            verdict = classify(exc)
            if verdict is None:
                raise StoreFailure(operation, str(exc.orig)) from exc
            return None, verdict

    def _forget(self, table: str, verdict: ProbeResult) -> None:
        """A statement disagreed with a cached verdict; update the cache."""
        if verdict is ProbeResult.TABLE_MISSING:
            self._prober.mark_table_missing(table)
        elif verdict is ProbeResult.READ_ONLY:
            self._prober.mark_read_only(table)
        else:
            self._prober.invalidate(table)

    async def _select(
        self,
        db: AsyncSession,
        source: GrantSource,
        operator_id: str,
        athlete_id: str | None,
        active_only: bool,
        now: datetime,
        limit: int,
    ) -> list[UnlockGrant]:
        sql = grant_sql.select_grants(
            source, by_athlete=athlete_id is not None, active_only=active_only
        )
        params: dict[str, Any] = {"operator_id": operator_id, "limit": limit}
        if athlete_id is not None:
            params["athlete_id"] = athlete_id
        if active_only and source.expiry_col:
            params["now"] = now
        rows, verdict = await self._run(db, sql, params, f"Unlock lookup ({source.table})")
        if verdict is not None:
            self._forget(source.table, verdict)
            return []
        return [_row_to_grant(row, source.table) for row in rows]

    async def _first_match(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        active_only: bool,
        now: datetime,
    ) -> UnlockGrant | None:
        for candidate in READ_SOURCES:
            source = await self._resolve(db, candidate)
            if source is None:
                continue
            grants = await self._select(
                db, source, operator_id, athlete_id, active_only, now, limit=1
            )
            if grants:
                return grants[0]
        return None

    async def _ledger_only(self, db: AsyncSession) -> bool:
        """True when no candidate table would take an insert."""
        for candidate in TABLE_SOURCES:
            if not self._prober.accepts_inserts(candidate.name):
                continue
            if await self._resolve(db, candidate) is not None:
                return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_active(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        now: datetime | None = None,
    ) -> UnlockGrant | None:
        """Active = no expiry, or expiry strictly in the future."""
        now = now or utc_now()
        grant = await self._first_match(db, operator_id, athlete_id, True, now)
        if grant is None and await self._ledger_only(db):
            grant = await self._ledger.find(db, operator_id, athlete_id)
        # Sources without an expiry column filter nothing in SQL.
        if grant is not None and not grant.is_active(now):
            return None
        return grant

    async def find_latest(
        self, db: AsyncSession, operator_id: str, athlete_id: str
    ) -> UnlockGrant | None:
        grant = await self._first_match(db, operator_id, athlete_id, False, utc_now())
        if grant is None and await self._ledger_only(db):
            grant = await self._ledger.find(db, operator_id, athlete_id)
        return grant

    async def list_active(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> list[UnlockGrant]:
        """Active grants from the first source that has any."""
        now = now or utc_now()
        for candidate in READ_SOURCES:
            source = await self._resolve(db, candidate)
            if source is None:
                continue
            grants = await self._select(
                db, source, operator_id, None, True, now, limit=LIST_LIMIT
            )
            grants = [g for g in grants if g.is_active(now)]
            if grants:
                return grants
        if await self._ledger_only(db):
            derived = await self._ledger.list_latest(db, operator_id, LIST_LIMIT) or []
            return [g for g in derived if g.is_active(now)]
        return []

    async def count_active(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> int | None:
        """Active grants per the canonical view, else summed over tables.

        Ledger-derived grants are added in ledger-only mode. None when no
        source can be read at all.
        """
        now = now or utc_now()
        view = next(c for c in READ_SOURCES if c.name == ACTIVE_GRANTS_VIEW)
        view_total = await self._count_in(db, view, operator_id, now)
        if view_total is not None:
            total: int | None = view_total
        else:
            total = None
            for candidate in TABLE_SOURCES:
                counted = await self._count_in(db, candidate, operator_id, now)
                if counted is not None:
                    total = (total or 0) + counted

        if await self._ledger_only(db):
            derived = await self._ledger.list_latest(db, operator_id, LIST_LIMIT)
            if derived is not None:
                total = (total or 0) + sum(1 for g in derived if g.is_active(now))
        return total

    async def _count_in(
        self, db: AsyncSession, candidate: CandidateSource, operator_id: str, now: datetime
    ) -> int | None:
        source = await self._resolve(db, candidate)
        if source is None:
            return None
        sql = grant_sql.count_active(source.table, source.operator_col, source.expiry_col)
        params: dict[str, Any] = {"operator_id": operator_id}
        if source.expiry_col:
            params["now"] = now
        rows, verdict = await self._run(db, sql, params, f"Unlock count ({source.table})")
        if verdict is not None:
            self._forget(source.table, verdict)
            return None
        return int(rows[0].total) if rows else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        unlocked_at: datetime,
        expires_at: datetime | None,
    ) -> UnlockGrant:
        params = {
            "operator_id": operator_id,
            "athlete_id": athlete_id,
            "unlocked_at": unlocked_at,
            "expires_at": expires_at,
        }
        for candidate in TABLE_SOURCES:
            if not self._prober.accepts_inserts(candidate.name):
                continue
            source = await self._resolve(db, candidate)
            if source is None:
                continue

            sql = grant_sql.insert_grant(source)
            try:
                async with db.begin_nested():
                    await db.execute(text(sql), _bind(sql, params))
            except DBAPIError as exc:
                if pg_errors.is_unique_violation(exc):
                    return await self._resolve_conflict(db, source, params)
                if pg_errors.is_not_null_violation(exc):
                    # Still swept by void_all.
                    self._prober.mark_not_insertable(source.table)
                    continue
                verdict = classify(exc)
                if verdict is None:
                    raise StoreFailure(
                        f"Unlock grant write ({source.table})", str(exc.orig)
                    ) from exc
                self._forget(source.table, verdict)
                continue

            logger.debug("Unlock grant written to %s", source.table)
            return UnlockGrant(
                operator_id=operator_id,
                athlete_id=athlete_id,
                unlocked_at=unlocked_at,
                expires_at=expires_at,
                source=source.table,
            )

        logger.warning(
            "No writable unlock table; unlock recorded in the ledger only: op=%s athlete=%s",
            operator_id,
            athlete_id,
        )
        return UnlockGrant(
            operator_id=operator_id,
            athlete_id=athlete_id,
            unlocked_at=unlocked_at,
            expires_at=expires_at,
            source=None,
        )

    async def _resolve_conflict(
        self, db: AsyncSession, source: GrantSource, params: Mapping[str, Any]
    ) -> UnlockGrant:
        """A row for the pair exists: renew it if expired, else report it."""
        unlocked_at: datetime = params["unlocked_at"]
        if source.expiry_col:
            sql = grant_sql.renew_expired_grant(source)
            renewed, verdict = await self._run(
                db, sql, _bind(sql, {**params, "now": unlocked_at}),
                f"Unlock grant renew ({source.table})",
            )
            if verdict is None and renewed:
                logger.debug("Expired unlock grant renewed in %s", source.table)
                return UnlockGrant(
                    operator_id=params["operator_id"],
                    athlete_id=params["athlete_id"],
                    unlocked_at=unlocked_at,
                    expires_at=params["expires_at"],
                    source=source.table,
                )
            if verdict is not None:
                self._forget(source.table, verdict)

        existing = await self._select(
            db, source, params["operator_id"], params["athlete_id"],
            active_only=False, now=unlocked_at, limit=1,
        )
        if not existing:
            raise StoreFailure(
                f"Unlock grant write ({source.table})", "conflicting row could not be read"
            )
        grant = existing[0]
        grant.preexisting = True
        logger.info(
            "Unlock grant already present: op=%s athlete=%s table=%s",
            grant.operator_id,
            grant.athlete_id,
            source.table,
        )
        return grant

    async def void_all(
        self, db: AsyncSession, operator_id: str, now: datetime | None = None
    ) -> VoidResult:
        """Delete (or, where only updates are allowed, back-date) every grant row.

        Missing tables and read-only views are recorded and skipped; only a
        non-schema error aborts the sweep. In ledger-only mode the operator's
        unlock debits are re-tagged as well.
        """
        expired_at = (now or utc_now()) - _EXPIRE_OFFSET
        result = VoidResult()
        for candidate in SWEEP_SOURCES:
            outcome = await self._void_in(db, candidate, operator_id, expired_at)
            result.tables.append(outcome)
        if await self._ledger_only(db):
            result.tables.append(await self._ledger.void_all(db, operator_id))
        if not result.any_attempted:
            logger.warning("Unlock reset found no usable tables: op=%s", operator_id)
        return result

    async def _void_in(
        self,
        db: AsyncSession,
        candidate: CandidateSource,
        operator_id: str,
        expired_at: datetime,
    ) -> SourceOutcome:
        outcome = SourceOutcome(table=candidate.name)
        resolution = await self._prober.resolve_columns(
            db, candidate.name, RESET_FIELDS, OPTIONAL_RESET_FIELDS
        )
        if resolution.status is ProbeResult.TABLE_MISSING:
            outcome.skipped, outcome.reason = True, "table_missing"
            return outcome
        if not resolution.ok:
            outcome.skipped, outcome.reason = True, "column_missing"
            return outcome

        operator_col = resolution.columns["operator"] or ""
        expiry_col = resolution.columns.get("expires_at")
        outcome.column = operator_col
        operation = f"Operator unlock reset ({candidate.name})"

        if not self._prober.is_read_only(candidate.name):
            removed, verdict = await self._run(
                db,
                grant_sql.delete_operator_rows(candidate.name, operator_col),
                {"operator_id": operator_id},
                operation,
            )
            if verdict is None:
                outcome.attempted = True
                outcome.removed = int(removed or 0)
                return outcome
            if verdict is not ProbeResult.READ_ONLY:
                self._forget(candidate.name, verdict)
                outcome.skipped = True
                outcome.reason = verdict.value
                return outcome
            self._prober.mark_read_only(candidate.name)

        if expiry_col:
            expired, verdict = await self._run(
                db,
                grant_sql.expire_operator_rows(candidate.name, operator_col, expiry_col),
                {"operator_id": operator_id, "expired_at": expired_at},
                operation,
            )
            if verdict is None:
                outcome.attempted = True
                outcome.expired = int(expired or 0)
                return outcome
            if verdict is not ProbeResult.READ_ONLY:
                self._forget(candidate.name, verdict)
                outcome.skipped = True
                outcome.reason = verdict.value
                return outcome

        outcome.skipped = True
        outcome.reason = "immutable_view"
        return outcome


def _bind(sql: str, params: Mapping[str, Any]) -> dict[str, Any]:
    """Only the bind parameters the statement actually uses."""
    return {k: v for k, v in params.items() if f":{k}" in sql}
