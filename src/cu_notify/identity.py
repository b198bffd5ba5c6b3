"""IdentityResolver: best-effort names and email addresses for notifications.

Tries the profile table first (`athlete` / `op_account`), then the auth
provider's user table for the email. Nothing here ever fails an unlock:
missing tables or columns yield blanks, other errors are logged.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common import pg_errors

logger = logging.getLogger(__name__)

_ATHLETE_SQL = text(
    "SELECT first_name, last_name, email FROM athlete WHERE id::text = :id LIMIT 1"
)
_ATHLETE_NO_EMAIL_SQL = text(
    "SELECT first_name, last_name FROM athlete WHERE id::text = :id LIMIT 1"
)
_OPERATOR_SQL = text(
    "SELECT first_name, last_name, email, auth_user_id FROM op_account"
    " WHERE id::text = :id LIMIT 1"
)
_AUTH_EMAIL_SQL = text("SELECT email FROM auth.users WHERE id::text = :id LIMIT 1")


@dataclass
class Identity:
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class IdentityResolver:
    async def _fetch(
        self, db: AsyncSession, sql: Any, params: dict[str, Any], what: str
    ) -> Any:
        """One row or None. Raises only for column-missing (callers fall back)."""
        try:
            async with db.begin_nested():
                result = await db.execute(sql, params)
                return result.fetchone()
        except DBAPIError as exc:
            if pg_errors.is_column_missing(exc):
                raise
            if pg_errors.is_table_missing(exc):
                logger.debug("%s source missing", what)
            else:
                logger.warning("%s lookup failed: %s", what, exc.orig)
            return None

    async def _auth_email(self, db: AsyncSession, auth_user_id: str | None) -> str | None:
        if not auth_user_id:
            return None
        try:
            row = await self._fetch(db, _AUTH_EMAIL_SQL, {"id": auth_user_id}, "Auth email")
        except DBAPIError:
            return None
        return _clean(row.email) if row else None

    async def athlete(self, db: AsyncSession, athlete_id: str) -> Identity:
        identity = Identity()
        try:
            row = await self._fetch(db, _ATHLETE_SQL, {"id": athlete_id}, "Athlete identity")
        except DBAPIError:
            try:
                row = await self._fetch(
                    db, _ATHLETE_NO_EMAIL_SQL, {"id": athlete_id}, "Athlete identity"
                )
            except DBAPIError:
                row = None
        if row is not None:
            identity.first_name = _clean(row.first_name)
            identity.last_name = _clean(row.last_name)
            identity.email = _clean(getattr(row, "email", None))
        if identity.email is None:
            # Athlete ids are the auth user ids.
            identity.email = await self._auth_email(db, athlete_id)
        return identity

    async def operator(self, db: AsyncSession, operator_id: str) -> Identity:
        identity = Identity()
        try:
            row = await self._fetch(db, _OPERATOR_SQL, {"id": operator_id}, "Operator identity")
        except DBAPIError:
            row = None
        if row is None:
            return identity
        identity.first_name = _clean(row.first_name)
        identity.last_name = _clean(row.last_name)
        identity.email = _clean(row.email)
        if identity.email is None:
            identity.email = await self._auth_email(db, row.auth_user_id)
        return identity
