"""SchemaProber: runtime discovery of which candidate tables/columns exist.

A probe is a minimal read (`SELECT "col" FROM "table" LIMIT 1`) run inside a
SAVEPOINT; the backend error code is classified into a verdict and cached, so
each (table, column) pair is probed at most once per cache lifetime.

Verdicts:
    OK              column readable on that table
    COLUMN_MISSING  table exists, column does not (42703)
    TABLE_MISSING   no such table or view (42P01)
    READ_ONLY       recorded by writers when the store rejects a write (0A000...)
    NOT_INSERTABLE  recorded by writers when an insert needs columns they do not
                    fill (23502); deletes and updates still apply

Anything else is not a schema question and propagates as StoreFailure.
"""

import logging
import re
import time
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common import pg_errors
from src.cu_common.errors import StoreFailure

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Cache slot for insert verdicts; never a valid column name.
_INSERT_SLOT = "+insert"


class ProbeResult(str, Enum):
    OK = "ok"
    COLUMN_MISSING = "column_missing"
    TABLE_MISSING = "table_missing"
    READ_ONLY = "read_only"
    NOT_INSERTABLE = "not_insertable"


def quote_ident(name: str) -> str:
    """Double-quote a catalog identifier. Only lowercase snake_case is accepted."""
    if not _IDENT_RE.match(name):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return f'"{name}"'


def classify(exc: BaseException) -> ProbeResult | None:
    """Map a backend error to a schema verdict, or None if it is not one."""
    if pg_errors.is_table_missing(exc):
        return ProbeResult.TABLE_MISSING
    if pg_errors.is_column_missing(exc):
        return ProbeResult.COLUMN_MISSING
    if pg_errors.is_read_only(exc):
        return ProbeResult.READ_ONLY
    return None


@dataclass
class ColumnResolution:
    table: str
    status: ProbeResult
    columns: dict[str, str | None] = field(default_factory=dict)
    missing_field: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeResult.OK


class SchemaProber:
    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = settings.SCHEMA_PROBE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        # (table, column) -> (verdict, recorded_at); column "" is the table-level entry
        self._cache: dict[tuple[str, str], tuple[ProbeResult, float]] = {}

    def _get(self, table: str, column: str) -> ProbeResult | None:
        entry = self._cache.get((table, column))
        if entry is None:
            return None
        verdict, recorded_at = entry
        if self._ttl > 0 and self._clock() - recorded_at >= self._ttl:
            del self._cache[(table, column)]
            return None
        return verdict

    def _put(self, table: str, column: str, verdict: ProbeResult) -> None:
        self._cache[(table, column)] = (verdict, self._clock())

    def cached(self, table: str, column: str = "") -> ProbeResult | None:
        return self._get(table, column)

    async def probe(self, db: AsyncSession, table: str, column: str) -> ProbeResult:
        if self._get(table, "") is ProbeResult.TABLE_MISSING:
            return ProbeResult.TABLE_MISSING
        cached = self._get(table, column)
        if cached is not None:
            return cached

        sql = text(f"SELECT {quote_ident(column)} FROM {quote_ident(table)} LIMIT 1")
        try:
            async with db.begin_nested():
                await db.execute(sql)
            verdict = ProbeResult.OK
        except DBAPIError as exc:
            verdict = classify(exc)
            if verdict not in (ProbeResult.TABLE_MISSING, ProbeResult.COLUMN_MISSING):
                raise StoreFailure(
                    f"Schema probe {table}.{column}", str(exc.orig)
                ) from exc

        if verdict is ProbeResult.TABLE_MISSING:
            self._put(table, "", verdict)
        self._put(table, column, verdict)
        logger.debug("Schema probe %s.%s -> %s", table, column, verdict.value)
        return verdict

    async def resolve_columns(
        self,
        db: AsyncSession,
        table: str,
        fields: Mapping[str, Sequence[str]],
        optional: Collection[str] = (),
    ) -> ColumnResolution:
        """Pick the first existing candidate column for every logical field.

        Optional fields resolve to None when no candidate exists; a missing
        required field makes the whole table unusable (COLUMN_MISSING).
        """
        columns: dict[str, str | None] = {}
        for logical, candidates in fields.items():
            chosen: str | None = None
            for candidate in candidates:
                verdict = await self.probe(db, table, candidate)
                if verdict is ProbeResult.TABLE_MISSING:
                    return ColumnResolution(table, ProbeResult.TABLE_MISSING)
                if verdict is ProbeResult.OK:
                    chosen = candidate
                    break
            if chosen is None and logical not in optional:
                return ColumnResolution(
                    table, ProbeResult.COLUMN_MISSING, columns, missing_field=logical
                )
            columns[logical] = chosen
        return ColumnResolution(table, ProbeResult.OK, columns)

    def mark_read_only(self, table: str) -> None:
        if self._get(table, "") is not ProbeResult.READ_ONLY:
            logger.warning("Table %s rejected a write; treating it as read-only", table)
        self._put(table, "", ProbeResult.READ_ONLY)

    def is_read_only(self, table: str) -> bool:
        return self._get(table, "") is ProbeResult.READ_ONLY

    def mark_not_insertable(self, table: str) -> None:
        if self._get(table, _INSERT_SLOT) is not ProbeResult.NOT_INSERTABLE:
            logger.warning("Table %s requires columns we do not write; inserts skip it", table)
        self._put(table, _INSERT_SLOT, ProbeResult.NOT_INSERTABLE)

    def accepts_inserts(self, table: str) -> bool:
        if self.is_read_only(table):
            return False
        return self._get(table, _INSERT_SLOT) is not ProbeResult.NOT_INSERTABLE

    def mark_table_missing(self, table: str) -> None:
        self._put(table, "", ProbeResult.TABLE_MISSING)

    def invalidate(self, table: str | None = None) -> None:
        if table is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == table]:
            del self._cache[key]


_prober = SchemaProber()


def get_schema_prober() -> SchemaProber:
    """Process-wide prober; verdicts live as long as the worker (or the TTL)."""
    return _prober
