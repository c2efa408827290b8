import logging
from typing import TypedDict

from fastapi import APIRouter, Cookie, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import CurrentUserDep, DbSessionDep
from app.core.audit import audit_login_failed, audit_login_success, audit_logout, audit_register
from app.core.config import settings
from app.core.rate_limit import check_rate_limit
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    verify_password,
)
from app.models.models import Parent, User
from app.schemas.auth import LoginRequest, RegisterRequest, UserPublic


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("santa.auth")


class CookieOptions(TypedDict, total=False):
    samesite: str
    secure: bool


DEFAULT_SESSION_DAYS = 30
ALLOWED_SESSION_DAYS = {7, 30}


def _cookie_options() -> CookieOptions:
    """
    Cookie options based on environment.

    Cross-origin deployments need samesite="none" over HTTPS; local
    development uses samesite="lax" over plain HTTP.
    """
    environment = (settings.environment or "local").lower()
    if environment == "local":
        return {"samesite": "lax", "secure": False}
    return {"samesite": "none", "secure": True}


def _resolve_cookie_max_age(remember_me: bool, session_days: int | None) -> int | None:
    if not remember_me:
        return None
    days = session_days if session_days in ALLOWED_SESSION_DAYS else DEFAULT_SESSION_DAYS
    return days * 24 * 60 * 60


def _parse_session_days(raw: str | None) -> int:
    try:
        parsed = int(raw or "")
    except ValueError:
        parsed = DEFAULT_SESSION_DAYS
    return parsed if parsed in ALLOWED_SESSION_DAYS else DEFAULT_SESSION_DAYS


def _set_session_cookies(
    response: Response,
    user_id: int | str,
    *,
    remember_me: bool = True,
    session_days: int | None = DEFAULT_SESSION_DAYS,
) -> None:
    max_age = _resolve_cookie_max_age(remember_me, session_days)
    normalized_days = session_days if session_days in ALLOWED_SESSION_DAYS else DEFAULT_SESSION_DAYS
    cookies = {
        "access_token": create_access_token(str(user_id)),
        "refresh_token": create_refresh_token(str(user_id)),
        "remember_me": "1" if remember_me else "0",
        "session_days": str(normalized_days),
    }
    for name, value in cookies.items():
        response.set_cookie(name, value, httponly=True, max_age=max_age, path="/", **_cookie_options())


def _clear_session_cookies(response: Response) -> None:
    for name in ("access_token", "refresh_token", "remember_me", "session_days"):
        response.delete_cookie(name, path="/", **_cookie_options())


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: RegisterRequest,
    db: DbSessionDep,
    request: Request,
    response: Response,
) -> UserPublic:
    check_rate_limit(request, max_requests=5, window_seconds=300, key_suffix="register")

    existing = await db.execute(select(User).where(User.email == payload.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        email=payload.email,
        hashed_password=get_password_hash(payload.password),
        name=payload.name,
    )
    db.add(user)
    await db.flush()
    db.add(
        Parent(
            user_id=user.id,
            name=payload.name,
            email=payload.email,
            max_friend_gift_value=settings.default_max_friend_gift_value,
        )
    )
    await db.commit()
    await db.refresh(user)

    _set_session_cookies(
        response,
        user.id,
        remember_me=payload.remember_me,
        session_days=payload.session_days,
    )
    audit_register(request, user.id, user.email)
    logger.info("Parent registered user_id=%s", user.id)
    return UserPublic.model_validate(user)


@router.post("/login", response_model=UserPublic)
async def login_user(
    payload: LoginRequest,
    response: Response,
    db: DbSessionDep,
    request: Request,
) -> UserPublic:
    check_rate_limit(request, max_requests=settings.rate_limit_login_requests, window_seconds=60, key_suffix="login")

    request_id = request.headers.get("X-Request-Id")
    try:
        result = await db.execute(select(User).where(User.email == payload.email))
        user = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Auth login db error id=%s email=%s", request_id, payload.email)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        )

    if not user or not verify_password(payload.password, user.hashed_password):
        reason = "user_not_found" if not user else "invalid_password"
        logger.info("Auth login failed id=%s email=%s reason=%s", request_id, payload.email, reason)
        audit_login_failed(request, payload.email, reason)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid email or password",
        )

    _set_session_cookies(
        response,
        user.id,
        remember_me=payload.remember_me,
        session_days=payload.session_days,
    )
    audit_login_success(request, user.id, user.email)
    logger.info("Auth login success id=%s user_id=%s", request_id, user.id)
    return UserPublic.model_validate(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout_user(request: Request, response: Response, current_user: CurrentUserDep) -> None:
    _clear_session_cookies(response)
    audit_logout(request, current_user.id)


@router.post("/refresh", status_code=status.HTTP_204_NO_CONTENT)
async def refresh_token(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias="refresh_token"),
    remember_me_cookie: str | None = Cookie(default="1", alias="remember_me"),
    session_days_cookie: str | None = Cookie(default=str(DEFAULT_SESSION_DAYS), alias="session_days"),
) -> None:
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_refresh_token(refresh_token)
    subject = payload.get("sub") if payload else None
    if not isinstance(subject, str):
        response.delete_cookie("refresh_token", path="/", **_cookie_options())
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    _set_session_cookies(
        response,
        subject,
        remember_me=remember_me_cookie != "0",
        session_days=_parse_session_days(session_days_cookie),
    )


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: CurrentUserDep) -> UserPublic:
    return UserPublic.model_validate(current_user)
