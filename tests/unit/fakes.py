"""In-memory stand-ins for the database session and the repository Protocols.

FakeSession understands the statement shapes the grant store and the schema
prober emit (probe SELECT, grant SELECT / COUNT, INSERT, UPDATE, DELETE with
`"col"::text = :param` filters). Anything it cannot find raises the same
SQLSTATE PostgreSQL would, wrapped in a SQLAlchemy DBAPIError.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

from sqlalchemy.exc import DBAPIError, IntegrityError, ProgrammingError

from src.cu_common.credits import BALANCE_TOLERANCE, ZERO, round_credits
from src.cu_common.datetime_utils import utc_now
from src.cu_common.errors import InsufficientCreditsError, WalletNotFoundError
from src.cu_pricing.domain.models import Tariff
from src.cu_unlock.domain.models import (
    UNLOCK_TX_REF_PREFIX,
    SourceOutcome,
    UnlockGrant,
    VoidResult,
    athlete_from_tx_ref,
)
from src.cu_unlock.infrastructure.ledger_grants import LEDGER_TABLE, RESET_TAG, grant_from_debit
from src.cu_wallet.domain.models import LedgerMutation, Wallet, WalletTransaction

UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
FEATURE_NOT_SUPPORTED = "0A000"
UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"


class FakePgError(Exception):
    def __init__(self, sqlstate: str, message: str = "") -> None:
        super().__init__(message or f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def pg_error(sqlstate: str, message: str = "") -> DBAPIError:
    cls = IntegrityError if sqlstate.startswith("23") else ProgrammingError
    return cls("fake statement", {}, FakePgError(sqlstate, message))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class NoopSavepoint:
    async def __aenter__(self) -> "NoopSavepoint":
        return self

    async def __aexit__(self, *exc_info: object) -> bool:
        return False


class FakeResult:
    def __init__(self, rows: list[Any] | None = None, rowcount: int = 0) -> None:
        self._rows = rows
        self.rowcount = len(rows) if rows is not None else rowcount
        self.returns_rows = rows is not None

    def fetchall(self) -> list[Any]:
        return list(self._rows or [])

    def fetchone(self) -> Any:
        return self._rows[0] if self._rows else None


@dataclass
class FakeTable:
    columns: tuple[str, ...]
    rows: list[dict[str, Any]] = field(default_factory=list)
    read_only: bool = False
    unique: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    active_column: str | None = None  # set on "active" views: hides expired rows


_TABLE_RE = re.compile(r'(?:FROM|INTO|UPDATE) "?([\w.]+)"?')
_QUOTED_RE = re.compile(r'"(\w+)"')


def _normalize(statement: Any) -> str:
    return " ".join(str(statement).split())


class FakeSession:
    """AsyncSession stand-in. `commit` / `rollback` are AsyncMocks."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.statements: list[str] = []
        self.fail_on: dict[str, str] = {}         # SQL fragment -> SQLSTATE
        self.canned: dict[str, list[Any]] = {}    # SQL fragment -> rows
        self.commit = AsyncMock()
        self.rollback = AsyncMock()

    def begin_nested(self) -> NoopSavepoint:
        return NoopSavepoint()

    def add_table(self, name: str, columns: tuple[str, ...], **kwargs: Any) -> FakeTable:
        table = FakeTable(columns=columns, **kwargs)
        self.tables[name] = table
        return table

    def add_view(self, name: str, base: str, active_column: str | None = None) -> FakeTable:
        source = self.tables[base]
        view = FakeTable(
            columns=source.columns,
            rows=source.rows,
            read_only=True,
            active_column=active_column,
        )
        self.tables[name] = view
        return view

    def executed(self, fragment: str) -> list[str]:
        return [s for s in self.statements if fragment in s]

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        sql = _normalize(statement)
        params = dict(params or {})
        self.statements.append(sql)

        for fragment, sqlstate in self.fail_on.items():
            if fragment in sql:
                raise pg_error(sqlstate, f"injected failure for {fragment!r}")
        for fragment, rows in self.canned.items():
            if fragment in sql:
                return FakeResult(rows=list(rows))

        match = _TABLE_RE.search(sql)
        name = match.group(1) if match else ""
        table = self.tables.get(name)
        if table is None:
            raise pg_error(UNDEFINED_TABLE, f'relation "{name}" does not exist')
        for column in _QUOTED_RE.findall(sql):
            if column != name and column not in table.columns:
                raise pg_error(UNDEFINED_COLUMN, f'column "{column}" does not exist')

        if sql.startswith("SELECT COUNT(*)"):
            rows = [r for r in self._visible(table) if _where(sql, r, params)]
            return FakeResult(rows=[SimpleNamespace(total=len(rows))])
        if sql.startswith("SELECT"):
            if "AS operator_id" not in sql:
                return FakeResult(rows=[])  # schema probe
            return self._select(sql, table, params)
        if table.read_only:
            raise pg_error(FEATURE_NOT_SUPPORTED, f'cannot write to view "{name}"')
        if sql.startswith("INSERT"):
            return self._insert(sql, table, params)
        if sql.startswith("UPDATE"):
            return self._update(sql, table, params)
        if sql.startswith("DELETE"):
            kept = [r for r in table.rows if not _where(sql, r, params)]
            removed = len(table.rows) - len(kept)
            table.rows[:] = kept
            return FakeResult(rowcount=removed)
        raise AssertionError(f"FakeSession cannot run: {sql}")

    def _visible(self, table: FakeTable) -> list[dict[str, Any]]:
        if table.active_column is None:
            return list(table.rows)
        now = datetime.now(timezone.utc)
        col = table.active_column
        return [r for r in table.rows if r.get(col) is None or r[col] > now]

    def _select(self, sql: str, table: FakeTable, params: dict[str, Any]) -> FakeResult:
        aliases = {
            alias: col
            for col, alias in re.findall(
                r'"(\w+)"(?:::text)? AS (operator_id|athlete_id|unlocked_at|expires_at)', sql
            )
        }
        rows = [r for r in self._visible(table) if _where(sql, r, params)]
        if "ORDER BY" in sql and "unlocked_at" in aliases:
            col = aliases["unlocked_at"]
            floor = datetime.min.replace(tzinfo=timezone.utc)
            rows.sort(key=lambda r: r.get(col) or floor, reverse=True)
        rows = rows[: params.get("limit", len(rows))]
        return FakeResult(
            rows=[
                SimpleNamespace(
                    operator_id=str(r[aliases["operator_id"]]),
                    athlete_id=str(r[aliases["athlete_id"]]),
                    unlocked_at=r.get(aliases["unlocked_at"]) if "unlocked_at" in aliases else None,
                    expires_at=r.get(aliases["expires_at"]) if "expires_at" in aliases else None,
                )
                for r in rows
            ]
        )

    def _insert(self, sql: str, table: FakeTable, params: dict[str, Any]) -> FakeResult:
        head, _, tail = sql.partition(" VALUES ")
        columns = _QUOTED_RE.findall(head.split("(", 1)[1])
        values = [params[p] for p in re.findall(r":(\w+)", tail)]
        row = dict.fromkeys(table.columns)
        row.update(zip(columns, values))
        for column in table.required:
            if row.get(column) is None:
                raise pg_error(NOT_NULL_VIOLATION, f'null value in column "{column}"')
        if table.unique and any(
            all(str(r.get(c)) == str(row.get(c)) for c in table.unique) for r in table.rows
        ):
            raise pg_error(UNIQUE_VIOLATION, "duplicate key value violates unique constraint")
        table.rows.append(row)
        return FakeResult(rowcount=1)

    def _update(self, sql: str, table: FakeTable, params: dict[str, Any]) -> FakeResult:
        set_part = sql.split(" SET ", 1)[1].split(" WHERE ", 1)[0]
        assignments = re.findall(r'"(\w+)" = :(\w+)', set_part)
        count = 0
        for row in table.rows:
            if _where(sql, row, params):
                for column, param in assignments:
                    row[column] = params[param]
                count += 1
        return FakeResult(rowcount=count)


def _where(sql: str, row: dict[str, Any], params: dict[str, Any]) -> bool:
    if " WHERE " not in sql:
        return True
    where = sql.split(" WHERE ", 1)[1].split(" ORDER BY ")[0].split(" LIMIT ")[0]
    for column, param in re.findall(r'"(\w+)"::text = :(\w+)', where):
        if str(row.get(column)) != str(params[param]):
            return False
    for column, param in re.findall(r'\("(\w+)" IS NULL OR "\w+" > :(\w+)\)', where):
        value = row.get(column)
        if value is not None and not value > params[param]:
            return False
    for column, param in re.findall(r'"(\w+)" IS NOT NULL AND "\w+" <= :(\w+)', where):
        value = row.get(column)
        if value is None or not value <= params[param]:
            return False
    return True


def canonical_grant_tables(db: FakeSession, with_views: bool = True) -> FakeTable:
    """The shape the migrations create: op_contact_unlocks plus its two views."""
    table = db.add_table(
        "op_contact_unlocks",
        ("id", "op_id", "athlete_id", "unlocked_at", "expires_at"),
        unique=("op_id", "athlete_id"),
    )
    if with_views:
        db.add_view("v_op_unlocks", "op_contact_unlocks")
        db.add_view("v_op_unlocks_active", "op_contact_unlocks", active_column="expires_at")
    return table


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class InMemoryLedger:
    """WalletLedgerProtocol over a dict of balances."""

    def __init__(
        self, balances: dict[str, Decimal] | None = None, replay_window_seconds: int = 0
    ) -> None:
        self.balances: dict[str, Decimal] = dict(balances or {})
        self.replay_window_seconds = replay_window_seconds
        self.transactions: dict[int, WalletTransaction] = {}
        self._next_id = 1
        self.fail_delete: Exception | None = None
        self.fail_restore: Exception | None = None

    async def get_wallet(self, db: Any, operator_id: str) -> Wallet | None:
        if operator_id not in self.balances:
            return None
        return Wallet(operator_id, self.balances[operator_id])

    async def get_balance(self, db: Any, operator_id: str) -> Decimal:
        return self.balances.get(operator_id, ZERO)

    def _log(
        self, operator_id: str, kind: str, amount: Decimal, tx_ref: str, package_code: str | None
    ) -> WalletTransaction:
        tx = WalletTransaction(
            id=self._next_id,
            operator_id=operator_id,
            kind=kind,
            status="SETTLED",
            credits=amount,
            tx_ref=tx_ref,
            settled_at=utc_now(),
            package_code=package_code,
        )
        self.transactions[tx.id] = tx
        self._next_id += 1
        return tx

    async def debit(
        self,
        db: Any,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
        allow_replay: bool = True,
    ) -> LedgerMutation:
        replay = self._find_replay(operator_id, tx_ref, kinds) if allow_replay else None
        if replay is not None:
            balance = self.balances.get(operator_id, ZERO)
            return LedgerMutation(Wallet(operator_id, balance), replay, balance, replayed=True)
        if operator_id not in self.balances:
            raise WalletNotFoundError(operator_id)
        previous = self.balances[operator_id]
        if previous - amount < -BALANCE_TOLERANCE:
            raise InsufficientCreditsError(amount, previous)
        self.balances[operator_id] = max(round_credits(previous - amount), ZERO)
        tx = self._log(operator_id, kinds[0], amount, tx_ref, package_code)
        return LedgerMutation(Wallet(operator_id, self.balances[operator_id]), tx, previous)

    async def credit(
        self,
        db: Any,
        operator_id: str,
        amount: Decimal,
        tx_ref: str,
        kinds: tuple[str, ...],
        package_code: str | None = None,
    ) -> LedgerMutation:
        previous = self.balances.get(operator_id, ZERO)
        self.balances[operator_id] = round_credits(previous + amount)
        tx = self._log(operator_id, kinds[0], amount, tx_ref, package_code)
        return LedgerMutation(Wallet(operator_id, self.balances[operator_id]), tx, previous)

    def _find_replay(
        self, operator_id: str, tx_ref: str, kinds: tuple[str, ...]
    ) -> WalletTransaction | None:
        if self.replay_window_seconds <= 0:
            return None
        since = utc_now() - timedelta(seconds=self.replay_window_seconds)
        matches = [
            t for t in self.transactions.values()
            if t.operator_id == operator_id and t.tx_ref == tx_ref and t.kind in kinds
            and t.settled_at is not None and t.settled_at >= since
        ]
        return max(matches, key=lambda t: t.id) if matches else None

    async def delete_transaction(self, db: Any, tx_id: int) -> bool:
        if self.fail_delete is not None:
            raise self.fail_delete
        return self.transactions.pop(tx_id, None) is not None

    async def restore_balance(
        self, db: Any, operator_id: str, previous_balance: Decimal, debited_balance: Decimal
    ) -> Wallet | None:
        if self.fail_restore is not None:
            raise self.fail_restore
        if operator_id not in self.balances:
            return None
        delta = round_credits(previous_balance - debited_balance)
        self.balances[operator_id] = round_credits(self.balances[operator_id] + delta)
        return Wallet(operator_id, self.balances[operator_id])

    async def list_transactions(
        self, db: Any, operator_id: str, limit: int
    ) -> list[WalletTransaction]:
        txs = [t for t in self.transactions.values() if t.operator_id == operator_id]
        return sorted(txs, key=lambda t: t.id, reverse=True)[:limit]


class InMemoryLedgerGrants:
    """LedgerGrantReaderProtocol over an InMemoryLedger's transactions."""

    def __init__(self, ledger: InMemoryLedger, validity_days: int | None = 30) -> None:
        self.ledger = ledger
        self.validity_days = validity_days

    def _grants(self, operator_id: str) -> list[UnlockGrant]:
        txs = sorted(
            (t for t in self.ledger.transactions.values() if t.operator_id == operator_id),
            key=lambda t: t.id,
            reverse=True,
        )
        grants = []
        for tx in txs:
            athlete_id = athlete_from_tx_ref(tx.tx_ref)
            if athlete_id is not None:
                grants.append(
                    grant_from_debit(operator_id, athlete_id, tx.settled_at, self.validity_days)
                )
        return grants

    async def find(self, db: Any, operator_id: str, athlete_id: str) -> UnlockGrant | None:
        return next((g for g in self._grants(operator_id) if g.athlete_id == athlete_id), None)

    async def list_latest(
        self, db: Any, operator_id: str, limit: int
    ) -> list[UnlockGrant] | None:
        latest: dict[str, UnlockGrant] = {}
        for grant in self._grants(operator_id)[:limit]:
            latest.setdefault(grant.athlete_id, grant)
        return list(latest.values())

    async def void_all(self, db: Any, operator_id: str) -> SourceOutcome:
        retagged = 0
        for tx in self.ledger.transactions.values():
            if tx.operator_id == operator_id and (tx.tx_ref or "").startswith(
                UNLOCK_TX_REF_PREFIX
            ):
                tx.tx_ref = f"{RESET_TAG}{tx.tx_ref}"
                retagged += 1
        return SourceOutcome(LEDGER_TABLE, expired=retagged, attempted=True, column="tx_ref")


class InMemoryGrantStore:
    """UnlockGrantStoreProtocol over a dict keyed by (operator, athlete).

    With `ledger_only` set, writes keep nothing and reads fall back to
    `ledger_grants`, as UnlockGrantStore does when no table takes inserts.
    """

    def __init__(self, ledger_grants: InMemoryLedgerGrants | None = None) -> None:
        self.grants: dict[tuple[str, str], UnlockGrant] = {}
        self.upsert_error: Exception | None = None
        self.ledger_only = False
        self.ledger_grants = ledger_grants
        self.upsert_calls = 0

    def _derived(self) -> InMemoryLedgerGrants | None:
        return self.ledger_grants if self.ledger_only else None

    async def find_active(
        self, db: Any, operator_id: str, athlete_id: str, now: datetime | None = None
    ) -> UnlockGrant | None:
        grant = await self.find_latest(db, operator_id, athlete_id)
        if grant is None or not grant.is_active(now or utc_now()):
            return None
        return grant

    async def find_latest(self, db: Any, operator_id: str, athlete_id: str) -> UnlockGrant | None:
        grant = self.grants.get((operator_id, athlete_id))
        if grant is not None:
            return replace(grant)
        derived = self._derived()
        return await derived.find(db, operator_id, athlete_id) if derived else None

    async def list_active(
        self, db: Any, operator_id: str, now: datetime | None = None
    ) -> list[UnlockGrant]:
        now = now or utc_now()
        grants = [
            replace(g)
            for (op, _), g in self.grants.items()
            if op == operator_id and g.is_active(now)
        ]
        derived = self._derived()
        if not grants and derived is not None:
            grants = [
                g for g in await derived.list_latest(db, operator_id, 500) or [] if g.is_active(now)
            ]
        return grants

    async def count_active(
        self, db: Any, operator_id: str, now: datetime | None = None
    ) -> int | None:
        return len(await self.list_active(db, operator_id, now))

    async def upsert(
        self,
        db: Any,
        operator_id: str,
        athlete_id: str,
        unlocked_at: datetime,
        expires_at: datetime | None,
    ) -> UnlockGrant:
        self.upsert_calls += 1
        if self.upsert_error is not None:
            raise self.upsert_error
        grant = UnlockGrant(operator_id, athlete_id, unlocked_at, expires_at, source="memory")
        if self.ledger_only:
            grant.source = None
            return grant
        self.grants[(operator_id, athlete_id)] = grant
        return replace(grant)

    async def void_all(
        self, db: Any, operator_id: str, now: datetime | None = None
    ) -> VoidResult:
        keys = [k for k in self.grants if k[0] == operator_id]
        for key in keys:
            del self.grants[key]
        result = VoidResult([SourceOutcome("memory", removed=len(keys), attempted=True)])
        derived = self._derived()
        if derived is not None:
            result.tables.append(await derived.void_all(db, operator_id))
        return result


class FakePricingRepo:
    def __init__(self, tariff: Tariff | None = None) -> None:
        self.tariff = tariff
        self.updates: list[tuple[int, Decimal, int | None]] = []
        self.inserts: list[tuple[str, Decimal, int | None]] = []

    async def find_active(self, db: Any, code: str, now: datetime) -> Tariff | None:
        return self.tariff

    async def update_tariff(
        self, db: Any, tariff_id: int, credits_cost: Decimal, validity_days: int | None
    ) -> None:
        self.updates.append((tariff_id, credits_cost, validity_days))
        if self.tariff is not None:
            self.tariff = replace(
                self.tariff, credits_cost=credits_cost, validity_days=validity_days
            )

    async def insert_tariff(
        self,
        db: Any,
        code: str,
        credits_cost: Decimal,
        validity_days: int | None,
        effective_from: datetime,
    ) -> None:
        self.inserts.append((code, credits_cost, validity_days))
        self.tariff = Tariff(
            id=len(self.inserts),
            code=code,
            credits_cost=credits_cost,
            validity_days=validity_days,
            effective_from=effective_from,
        )


def tariff(cost: str = "4.00", validity_days: int | None = 30) -> Tariff:
    return Tariff(
        id=1, code="UNLOCK_CONTACTS", credits_cost=Decimal(cost), validity_days=validity_days
    )
