"""JWT bearer token creation and verification.

Tokens are issued by the external identity provider; this service only
verifies them. `sub` is the auth user id, `role` is optional ("admin").
`create_access_token` exists for local tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from config.settings import settings
from src.cu_common.errors import AuthenticationError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_ACCESS_EXPIRE = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)


def create_access_token(user_id: str, role: str | None = None) -> str:
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    if role:
        payload["role"] = role
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Raises:
        AuthenticationError: signature invalid, token expired, or no `sub`.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise AuthenticationError("Invalid or expired token.") from None

    if payload.get("type", "access") != "access" or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token.")
    return payload
