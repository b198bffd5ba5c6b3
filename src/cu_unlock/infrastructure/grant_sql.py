"""SQL builders for a resolved GrantSource.

Identifiers come from the candidate catalog and are quoted by quote_ident.
Id columns are compared as text so one statement works whatever type a
deployment gave them (uuid, varchar, bigint).
"""

from src.cu_schema.catalog import GrantSource
from src.cu_schema.prober import quote_ident as q


def _active_filter(expiry: str, param: str) -> str:
    return f"({expiry} IS NULL OR {expiry} > :{param})"


def select_grants(source: GrantSource, *, by_athlete: bool, active_only: bool) -> str:
    op, ath = q(source.operator_col), q(source.athlete_col)
    unlocked = q(source.unlocked_col) if source.unlocked_col else None
    expiry = q(source.expiry_col) if source.expiry_col else None

    columns = [
        f"{op}::text AS operator_id",
        f"{ath}::text AS athlete_id",
        f"{unlocked} AS unlocked_at" if unlocked else "NULL AS unlocked_at",
        f"{expiry} AS expires_at" if expiry else "NULL AS expires_at",
    ]
    where = [f"{op}::text = :operator_id"]
    if by_athlete:
        where.append(f"{ath}::text = :athlete_id")
    if active_only and expiry:
        where.append(_active_filter(expiry, "now"))

    sql = f"SELECT {', '.join(columns)} FROM {q(source.table)} WHERE {' AND '.join(where)}"
    if unlocked:
        sql += f" ORDER BY {unlocked} DESC NULLS LAST"
    return sql + " LIMIT :limit"


def insert_grant(source: GrantSource) -> str:
    columns = [q(source.operator_col), q(source.athlete_col)]
    values = [":operator_id", ":athlete_id"]
    if source.unlocked_col:
        columns.append(q(source.unlocked_col))
        values.append(":unlocked_at")
    if source.expiry_col:
        columns.append(q(source.expiry_col))
        values.append(":expires_at")
    return (
        f"INSERT INTO {q(source.table)} ({', '.join(columns)}) "
        f"VALUES ({', '.join(values)})"
    )


def renew_expired_grant(source: GrantSource) -> str:
    """Reuse an expired row for the same pair. Requires an expiry column."""
    if not source.expiry_col:
        raise ValueError(f"{source.table} has no expiry column to renew")
    expiry = q(source.expiry_col)
    assignments = [f"{expiry} = :expires_at"]
    if source.unlocked_col:
        assignments.append(f"{q(source.unlocked_col)} = :unlocked_at")
    return (
        f"UPDATE {q(source.table)} SET {', '.join(assignments)} "
        f"WHERE {q(source.operator_col)}::text = :operator_id "
        f"AND {q(source.athlete_col)}::text = :athlete_id "
        f"AND {expiry} IS NOT NULL AND {expiry} <= :now"
    )


def delete_operator_rows(table: str, operator_col: str) -> str:
    return f"DELETE FROM {q(table)} WHERE {q(operator_col)}::text = :operator_id"


def expire_operator_rows(table: str, operator_col: str, expiry_col: str) -> str:
    expiry = q(expiry_col)
    return (
        f"UPDATE {q(table)} SET {expiry} = :expired_at "
        f"WHERE {q(operator_col)}::text = :operator_id "
        f"AND {_active_filter(expiry, 'expired_at')}"
    )


def count_active(table: str, operator_col: str, expiry_col: str | None) -> str:
    sql = f"SELECT COUNT(*) AS total FROM {q(table)} WHERE {q(operator_col)}::text = :operator_id"
    if expiry_col:
        sql += f" AND {_active_filter(q(expiry_col), 'now')}"
    return sql
