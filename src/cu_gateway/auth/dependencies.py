"""FastAPI dependencies: caller principal, operator account, admin guard.

Usage in any protected router:
    from src.cu_gateway.auth.dependencies import get_current_operator

    @router.get("/protected")
    async def protected(operator: OperatorAccountModel = Depends(get_current_operator)):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cu_common.database import get_db_session
from src.cu_common.errors import AuthenticationError, AuthorizationError
from src.cu_gateway.auth.jwt_handler import decode_token
from src.cu_gateway.operator.db_models import OperatorAccountModel

# auto_error=False: a missing token is reported through AppError (401 + code)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin" or self.user_id in settings.admin_user_ids


async def get_current_principal(token: str | None = Depends(oauth2_scheme)) -> Principal:
    if not token:
        raise AuthenticationError("Missing access token.")
    payload = decode_token(token)
    role = payload.get("role")
    return Principal(user_id=str(payload["sub"]), role=role if isinstance(role, str) else None)


async def get_current_operator(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
) -> OperatorAccountModel:
    """Map the auth user to its operator account.

    Raises AuthorizationError (403) when the caller has no operator account.
    """
    result = await db.execute(
        select(OperatorAccountModel).where(
            OperatorAccountModel.auth_user_id == principal.user_id
        )
    )
    operator = result.scalar_one_or_none()
    if operator is None:
        raise AuthorizationError("Operator account not found for the current user.")
    return operator


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        raise AuthorizationError("Admin access required.")
    return principal
