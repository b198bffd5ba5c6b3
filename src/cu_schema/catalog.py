"""Candidate catalog for unlock-grant storage.

Deployments have stored grants under different table and column names over
time. Each logical field maps to an ordered list of physical candidates; the
first candidate that exists wins. Order is priority: the canonical name first.
"""

from dataclasses import dataclass
from enum import Enum


class SourceKind(str, Enum):
    TABLE = "table"
    VIEW = "view"  # derived, read-only


GRANT_TABLES: tuple[str, ...] = (
    "op_contact_unlocks",
    "op_contact_unlock",
    "op_unlocks",
    "op_unlock",
    "operator_contact_unlocks",
    "operator_contact_unlock",
    "op_athlete_unlocks",
    "op_athlete_unlock",
    "op_contact_unlock_history",
    "operator_unlocks",
    "operator_unlock",
)

# Preferred for reads; never written to.
GRANT_VIEWS: tuple[str, ...] = ("v_op_unlocks_active", "v_op_unlocks")
ACTIVE_GRANTS_VIEW = "v_op_unlocks_active"

OPERATOR_COLUMNS: tuple[str, ...] = (
    "op_id",
    "operator_id",
    "op_account_id",
    "operator_account_id",
)
ATHLETE_COLUMNS: tuple[str, ...] = (
    "athlete_id",
    "athlete",
    "talent_id",
    "player_id",
    "athlete_uuid",
)
UNLOCKED_COLUMNS: tuple[str, ...] = (
    "unlocked_at",
    "granted_at",
    "created_at",
    "access_granted_at",
)
EXPIRY_COLUMNS: tuple[str, ...] = (
    "expires_at",
    "expires_on",
    "valid_until",
    "valid_to",
    "visibility_expires_at",
    "access_expires_at",
)

# logical field -> physical candidates
GRANT_FIELDS: dict[str, tuple[str, ...]] = {
    "operator": OPERATOR_COLUMNS,
    "athlete": ATHLETE_COLUMNS,
    "unlocked_at": UNLOCKED_COLUMNS,
    "expires_at": EXPIRY_COLUMNS,
}
# A grant row is identifiable without timestamps; they are filled when present.
OPTIONAL_GRANT_FIELDS = frozenset({"unlocked_at", "expires_at"})

# The reset sweep only needs to find the operator's rows.
RESET_FIELDS: dict[str, tuple[str, ...]] = {
    "operator": OPERATOR_COLUMNS,
    "expires_at": EXPIRY_COLUMNS,
}
OPTIONAL_RESET_FIELDS = frozenset({"expires_at"})


@dataclass(frozen=True)
class CandidateSource:
    name: str
    kind: SourceKind

    @property
    def writable(self) -> bool:
        return self.kind is SourceKind.TABLE


@dataclass(frozen=True)
class GrantSource:
    """A resolved (table, columns) combination that holds grant rows."""

    table: str
    kind: SourceKind
    operator_col: str
    athlete_col: str
    unlocked_col: str | None = None
    expiry_col: str | None = None

    @property
    def writable(self) -> bool:
        return self.kind is SourceKind.TABLE


TABLE_SOURCES: tuple[CandidateSource, ...] = tuple(
    CandidateSource(name, SourceKind.TABLE) for name in GRANT_TABLES
)
VIEW_SOURCES: tuple[CandidateSource, ...] = tuple(
    CandidateSource(name, SourceKind.VIEW) for name in GRANT_VIEWS
)
# Views first: they are the canonical read path.
READ_SOURCES: tuple[CandidateSource, ...] = VIEW_SOURCES + TABLE_SOURCES
# Tables first, views last (views can only be expired, not deleted from).
SWEEP_SOURCES: tuple[CandidateSource, ...] = TABLE_SOURCES + VIEW_SOURCES
