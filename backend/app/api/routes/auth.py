from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_request_id
from app.core.config import get_settings
from app.core.security import (
    create_access_token,
    create_refresh_token,
    get_password_hash,
    hash_refresh_token,
    validate_password_policy,
    verify_password,
)
from app.models import RefreshToken, User
from app.schemas.auth import LoginRequest, RefreshResponse, RegisterRequest, TokenResponse, UserOut
from app.schemas.common import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE = "refresh_token"


def _set_refresh_cookie(response: Response, raw_refresh: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=raw_refresh,
        httponly=True,
        secure=settings.app_env != "development",
        samesite="lax",
        max_age=settings.refresh_token_expire_hours * 3600,
    )


def _new_refresh_token(user: User, request: Request) -> tuple[str, RefreshToken]:
    raw_refresh = create_refresh_token()
    token = RefreshToken(
        user_id=user.id,
        token_hash=hash_refresh_token(raw_refresh),
        expires_at=datetime.now(UTC) + timedelta(hours=get_settings().refresh_token_expire_hours),
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return raw_refresh, token


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserOut:
    email = payload.email.lower()
    exists = await db.execute(select(User).where(User.email == email))
    if exists.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    try:
        validate_password_policy(payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    user = User(
        email=email,
        password_hash=get_password_hash(payload.password),
        name=payload.name,
        role="user",
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info("User registered", extra={"request_id": get_request_id(request), "user_id": str(user.id)})
    return UserOut.model_validate(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    result = await db.execute(select(User).where(User.email == payload.email.lower(), User.is_active.is_(True)))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    now = datetime.now(UTC)
    active_tokens_result = await db.execute(
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user.id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now,
        )
        .order_by(RefreshToken.created_at.asc())
    )
    active_tokens = list(active_tokens_result.scalars().all())
    max_sessions = get_settings().max_concurrent_sessions
    if len(active_tokens) >= max_sessions:
        for token in active_tokens[: len(active_tokens) - max_sessions + 1]:
            token.revoked_at = now

    raw_refresh, refresh_token = _new_refresh_token(user, request)
    db.add(refresh_token)
    user.last_login = now
    await db.commit()

    access_token, access_exp = create_access_token(str(user.id), user.email, user.role)
    _set_refresh_cookie(response, raw_refresh)

    logger.info("User logged in", extra={"request_id": get_request_id(request), "user_id": str(user.id)})
    return TokenResponse(access_token=access_token, access_token_expires_at=access_exp)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> RefreshResponse:
    raw_refresh = request.cookies.get(REFRESH_COOKIE)
    if not raw_refresh:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing refresh token")

    now = datetime.now(UTC)
    token_result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_refresh_token(raw_refresh),
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now,
        )
    )
    token = token_result.scalar_one_or_none()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user_result = await db.execute(select(User).where(User.id == token.user_id, User.is_active.is_(True)))
    user = user_result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    token.revoked_at = now
    token.last_used_at = now
    new_raw_refresh, new_token = _new_refresh_token(user, request)
    db.add(new_token)
    await db.commit()

    access_token, access_exp = create_access_token(str(user.id), user.email, user.role)
    _set_refresh_cookie(response, new_raw_refresh)
    return RefreshResponse(access_token=access_token, access_token_expires_at=access_exp)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    raw_refresh = request.cookies.get(REFRESH_COOKIE)
    if raw_refresh:
        await db.execute(
            delete(RefreshToken).where(
                RefreshToken.user_id == current_user.id,
                RefreshToken.token_hash == hash_refresh_token(raw_refresh),
            )
        )
        await db.commit()

    response.delete_cookie(REFRESH_COOKIE)
    logger.info("User logged out", extra={"request_id": get_request_id(request), "user_id": str(current_user.id)})
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserOut)
async def me(current_user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return UserOut.model_validate(current_user)
