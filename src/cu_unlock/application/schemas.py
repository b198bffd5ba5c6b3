"""Pydantic schemas for the operator unlock endpoints.

Response field names follow the public contract: camelCase where the clients
read camelCase (`alreadyUnlocked`), snake_case inside `unlock` and `contacts`.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.cu_common.datetime_utils import to_iso
from src.cu_unlock.domain.models import UnlockGrant

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class UnlockRequest(BaseModel):
    """`athleteId` is the documented key; `athlete_id` and `id` are accepted
    from older clients. UUID shape is checked by the service."""

    athlete_id: Any = Field(
        None, validation_alias=AliasChoices("athleteId", "athlete_id", "id")
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class UnlockWindow(BaseModel):
    unlocked_at: str | None = None
    expires_at: str | None = None

    @classmethod
    def from_grant(cls, grant: UnlockGrant | None) -> "UnlockWindow":
        if grant is None:
            return cls()
        return cls(unlocked_at=to_iso(grant.unlocked_at), expires_at=to_iso(grant.expires_at))


class SocialProfile(BaseModel):
    id: str
    platform: str | None = None
    handle: str | None = None
    profile_url: str | None = None
    is_public: bool = True
    is_primary: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "SocialProfile":
        return cls(
            id=str(row.id),
            platform=row.platform,
            handle=row.handle,
            profile_url=row.profile_url,
            is_public=bool(row.is_public) if row.is_public is not None else True,
            is_primary=bool(row.is_primary),
        )


class ContactBundle(BaseModel):
    athlete_id: str
    unlocked: bool
    unlocked_at: str | None = None
    expires_at: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str = ""
    socials: list[SocialProfile] = Field(default_factory=list)

    @classmethod
    def from_grant(
        cls, athlete_id: str, grant: UnlockGrant | None, unlocked: bool
    ) -> "ContactBundle":
        window = UnlockWindow.from_grant(grant)
        return cls(
            athlete_id=athlete_id,
            unlocked=unlocked,
            unlocked_at=window.unlocked_at,
            expires_at=window.expires_at,
        )


class ContactBundleResponse(BaseModel):
    success: bool = True
    contacts: ContactBundle


class UnlockResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    already_unlocked: bool = Field(False, serialization_alias="alreadyUnlocked")
    unlock: UnlockWindow
    balance: float | None = None
    contacts: ContactBundle | None = None


class AthleteSummary(BaseModel):
    id: str
    first_name: str | None = None
    last_name: str | None = None
    profile_picture_url: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "AthleteSummary":
        return cls(
            id=str(row.id),
            first_name=row.first_name,
            last_name=row.last_name,
            profile_picture_url=row.profile_picture_url,
        )


class UnlockedAthleteItem(BaseModel):
    athlete_id: str
    unlocked_at: str | None = None
    expires_at: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_picture_url: str | None = None

    @classmethod
    def from_grant(
        cls, grant: UnlockGrant, summary: AthleteSummary | None
    ) -> "UnlockedAthleteItem":
        return cls(
            athlete_id=grant.athlete_id,
            unlocked_at=to_iso(grant.unlocked_at),
            expires_at=to_iso(grant.expires_at),
            first_name=summary.first_name if summary else None,
            last_name=summary.last_name if summary else None,
            profile_picture_url=summary.profile_picture_url if summary else None,
        )


class UnlockedAthletesResponse(BaseModel):
    success: bool = True
    items: list[UnlockedAthleteItem]
