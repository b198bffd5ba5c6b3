"""Contact data an operator can see for an athlete, and the operator's list
of currently unlocked athletes.

Private fields (name, phone, email, socials) are only read while a grant is
active. Profile tables belong to other parts of the system, so their absence
or older shapes (no `email` column) are tolerated.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common import pg_errors
from src.cu_common.errors import StoreFailure
from src.cu_notify.identity import IdentityResolver
from src.cu_unlock.application.schemas import (
    AthleteSummary,
    ContactBundle,
    SocialProfile,
    UnlockedAthleteItem,
)
from src.cu_unlock.domain.models import UnlockGrant
from src.cu_unlock.domain.repository import UnlockGrantStoreProtocol
from src.cu_unlock.infrastructure.grant_store import UnlockGrantStore

logger = logging.getLogger(__name__)

_ATHLETE_CONTACT_SQL = text(
    "SELECT first_name, last_name, phone, email FROM athlete WHERE id::text = :id LIMIT 1"
)
_ATHLETE_CONTACT_NO_EMAIL_SQL = text(
    "SELECT first_name, last_name, phone FROM athlete WHERE id::text = :id LIMIT 1"
)
_SOCIALS_SQL = text("""
    SELECT id, platform, handle, profile_url, is_public, is_primary
    FROM social_profiles
    WHERE athlete_id::text = :id
    ORDER BY sort_order ASC NULLS FIRST, created_at ASC NULLS LAST, id ASC
""")
_ATHLETE_SUMMARY_SQL = text("""
    SELECT id::text AS id, first_name, last_name, profile_picture_url
    FROM athlete
    WHERE id::text = ANY(:ids)
""")


def _text_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def dedupe_latest(grants: list[UnlockGrant]) -> list[UnlockGrant]:
    """One grant per athlete (latest unlocked_at wins), ordered by
    expires_at ascending with never-expiring last, then unlocked_at descending.
    """
    floor = datetime.min.replace(tzinfo=timezone.utc)
    by_athlete: dict[str, UnlockGrant] = {}
    for grant in grants:
        current = by_athlete.get(grant.athlete_id)
        if current is None or (grant.unlocked_at or floor) > (current.unlocked_at or floor):
            by_athlete[grant.athlete_id] = grant

    def sort_key(grant: UnlockGrant) -> tuple[int, float, float]:
        expires = grant.expires_at.timestamp() if grant.expires_at else 0.0
        unlocked = grant.unlocked_at.timestamp() if grant.unlocked_at else 0.0
        return (1 if grant.expires_at is None else 0, expires, -unlocked)

    return sorted(by_athlete.values(), key=sort_key)


class ContactBundleService:
    def __init__(
        self,
        grants: UnlockGrantStoreProtocol | None = None,
        identities: IdentityResolver | None = None,
    ) -> None:
        self._grants: UnlockGrantStoreProtocol = grants or UnlockGrantStore()
        self._identities = identities or IdentityResolver()

    async def _read(self, db: AsyncSession, sql: Any, params: dict[str, Any], what: str) -> Any:
        """Rows of a profile query; [] when its table is missing."""
        try:
            async with db.begin_nested():
                result = await db.execute(sql, params)
                return result.fetchall()
        except DBAPIError as exc:
            if pg_errors.is_table_missing(exc):
                logger.debug("%s: table missing", what)
                return []
            if pg_errors.is_column_missing(exc):
                raise
            raise StoreFailure(what, str(exc.orig)) from exc

    async def load_bundle(
        self, db: AsyncSession, operator_id: str, athlete_id: str
    ) -> ContactBundle:
        active = await self._grants.find_active(db, operator_id, athlete_id)
        grant = active or await self._grants.find_latest(db, operator_id, athlete_id)
        bundle = ContactBundle.from_grant(athlete_id, grant, unlocked=active is not None)
        if active is None:
            return bundle

        try:
            rows = await self._read(
                db, _ATHLETE_CONTACT_SQL, {"id": athlete_id}, "Athlete contact lookup"
            )
        except DBAPIError:
            rows = await self._read(
                db, _ATHLETE_CONTACT_NO_EMAIL_SQL, {"id": athlete_id}, "Athlete contact lookup"
            )
        if rows:
            row = rows[0]
            bundle.first_name = _text_or_none(row.first_name)
            bundle.last_name = _text_or_none(row.last_name)
            bundle.phone = _text_or_none(row.phone)
            bundle.email = _text_or_none(getattr(row, "email", None)) or ""

        try:
            socials = await self._read(
                db, _SOCIALS_SQL, {"id": athlete_id}, "Social profiles lookup"
            )
        except DBAPIError:
            socials = []
        bundle.socials = [SocialProfile.from_row(r) for r in socials]

        if not bundle.email:
            identity = await self._identities.athlete(db, athlete_id)
            bundle.email = identity.email or ""
        return bundle

    async def unlocked_athletes(
        self, db: AsyncSession, operator_id: str
    ) -> list[UnlockedAthleteItem]:
        grants = dedupe_latest(await self._grants.list_active(db, operator_id))
        summaries: dict[str, AthleteSummary] = {}
        if grants:
            try:
                rows = await self._read(
                    db,
                    _ATHLETE_SUMMARY_SQL,
                    {"ids": [g.athlete_id for g in grants]},
                    "Unlocked athletes lookup",
                )
            except DBAPIError:
                rows = []
            summaries = {str(r.id): AthleteSummary.from_row(r) for r in rows}
        return [UnlockedAthleteItem.from_grant(g, summaries.get(g.athlete_id)) for g in grants]
