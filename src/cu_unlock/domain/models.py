"""Domain models for cu_unlock: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


UNLOCK_TX_REF_PREFIX = "unlock:athlete:"


def unlock_tx_ref(athlete_id: str) -> str:
    return f"{UNLOCK_TX_REF_PREFIX}{athlete_id}"


def athlete_from_tx_ref(tx_ref: str | None) -> str | None:
    """The athlete id an unlock debit was tagged with, or None for other refs."""
    if not tx_ref or not tx_ref.startswith(UNLOCK_TX_REF_PREFIX):
        return None
    return tx_ref[len(UNLOCK_TX_REF_PREFIX):] or None


class UnlockState(str, Enum):
    START = "START"
    IDEMPOTENCY_CHECKED = "IDEMPOTENCY_CHECKED"
    PRICED = "PRICED"
    DEBITED = "DEBITED"
    GRANT_PERSISTED = "GRANT_PERSISTED"
    NOTIFIED = "NOTIFIED"        # terminal
    ABORTED = "ABORTED"          # absorbing, from PRICED or DEBITED


@dataclass
class UnlockGrant:
    operator_id: str
    athlete_id: str
    unlocked_at: datetime | None
    expires_at: datetime | None  # None = never expires
    source: str | None = None    # table/view holding the row; None = ledger-only
    preexisting: bool = False    # insert conflicted with someone else's active row

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


@dataclass
class SourceOutcome:
    """What the sweep did to one candidate table or view."""

    table: str
    removed: int = 0
    expired: int = 0
    attempted: bool = False
    skipped: bool = False
    reason: str | None = None    # table_missing | column_missing | immutable_view
    column: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "table": self.table,
            "removed": self.removed,
            "expired": self.expired,
            "attempted": self.attempted,
            "skipped": self.skipped,
        }
        if self.reason:
            body["reason"] = self.reason
        if self.column:
            body["column"] = self.column
        return body


@dataclass
class VoidResult:
    tables: list[SourceOutcome] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return sum(t.removed for t in self.tables)

    @property
    def expired(self) -> int:
        return sum(t.expired for t in self.tables)

    @property
    def cleared(self) -> int:
        return self.removed + self.expired

    @property
    def any_attempted(self) -> bool:
        return any(t.attempted for t in self.tables)


@dataclass
class UnlockOutcome:
    operator_id: str
    athlete_id: str
    grant: UnlockGrant
    already_unlocked: bool
    balance: Decimal | None
    credits_spent: Decimal
    state: UnlockState
    tx_id: int | None = None
