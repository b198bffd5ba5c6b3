"""SQLSTATE classification for backend errors.

The driver error is wrapped by SQLAlchemy (`DBAPIError.orig`); asyncpg and
psycopg expose the code as `sqlstate`, psycopg2 as `pgcode`. The asyncpg
adapter also chains the raw driver exception as `__cause__`.
"""

from sqlalchemy.exc import DBAPIError

UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
INVALID_TEXT_REPRESENTATION = "22P02"  # value not in a PG enum
CHECK_VIOLATION = "23514"
UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"  # table needs columns we do not write
FEATURE_NOT_SUPPORTED = "0A000"  # e.g. DELETE on a non-updatable view
WRONG_OBJECT_TYPE = "42809"
OBJECT_NOT_IN_PREREQUISITE_STATE = "55000"
INSUFFICIENT_PRIVILEGE = "42501"

READ_ONLY_STATES = frozenset({
    FEATURE_NOT_SUPPORTED,
    WRONG_OBJECT_TYPE,
    OBJECT_NOT_IN_PREREQUISITE_STATE,
    INSUFFICIENT_PRIVILEGE,
})
REJECTED_VALUE_STATES = frozenset({INVALID_TEXT_REPRESENTATION, CHECK_VIOLATION})


def sqlstate_of(exc: BaseException) -> str | None:
    """Extract the 5-character SQLSTATE from a DBAPI error, or None."""
    if not isinstance(exc, DBAPIError):
        return None
    candidates = [exc.orig, getattr(exc.orig, "__cause__", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            code = getattr(candidate, attr, None)
            if isinstance(code, str) and code.strip():
                return code.strip()
    return None


def is_table_missing(exc: BaseException) -> bool:
    return sqlstate_of(exc) == UNDEFINED_TABLE


def is_column_missing(exc: BaseException) -> bool:
    return sqlstate_of(exc) == UNDEFINED_COLUMN


def is_read_only(exc: BaseException) -> bool:
    return sqlstate_of(exc) in READ_ONLY_STATES


def is_rejected_value(exc: BaseException) -> bool:
    return sqlstate_of(exc) in REJECTED_VALUE_STATES


def is_unique_violation(exc: BaseException) -> bool:
    return sqlstate_of(exc) == UNIQUE_VIOLATION


def is_not_null_violation(exc: BaseException) -> bool:
    return sqlstate_of(exc) == NOT_NULL_VIOLATION
