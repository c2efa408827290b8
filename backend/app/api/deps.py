from datetime import datetime
from typing import Annotated
import logging

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthenticationRequired
from app.core.payments import PaymentGateway, get_payment_gateway
from app.core.security import decode_access_token
from app.db.session import get_db
from app.models.models import Parent, User
from app.services.policy import local_now


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = logging.getLogger("santa.auth")


def _extract_token(request: Request, access_token: str | None) -> str | None:
    if access_token:
        return access_token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip()
    return None


async def get_current_user(
    request: Request,
    db: DbSessionDep,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> User:
    token = _extract_token(request, access_token)
    if not token:
        logger.info(
            "Auth token missing path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise AuthenticationRequired("Not authenticated")

    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        logger.info("Auth token invalid path=%s", request.url.path)
        raise AuthenticationRequired("Invalid token")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        logger.info("Auth token subject invalid path=%s", request.url.path)
        raise AuthenticationRequired("Invalid token") from None

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        logger.info("Auth user missing path=%s user_id=%s", request.url.path, user_id)
        raise AuthenticationRequired("User not found")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


async def get_current_parent(db: DbSessionDep, user: CurrentUserDep) -> Parent:
    result = await db.execute(select(Parent).where(Parent.user_id == user.id))
    parent = result.scalar_one_or_none()
    if parent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent not found")
    return parent


async def require_admin(user: CurrentUserDep) -> User:
    if not user.is_admin:
        logger.info("Admin access denied user_id=%s", user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_now() -> datetime:
    """Current time in the season timezone; overridden in tests to pin dates."""
    return local_now()


CurrentParentDep = Annotated[Parent, Depends(get_current_parent)]
AdminDep = Annotated[User, Depends(require_admin)]
NowDep = Annotated[datetime, Depends(get_now)]
GatewayDep = Annotated[PaymentGateway, Depends(get_payment_gateway)]
