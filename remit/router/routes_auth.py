from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.auth import LoginIn, SessionOut, UserOut
from remit.router.deps import get_current_user_id, session_token_from, with_db_timeout
from remit.services.auth import SessionService
from remit.utils.config import settings
from remit.utils.db import get_db

router = APIRouter(tags=["auth"])


def get_session_service(db: AsyncSession = Depends(get_db)) -> SessionService:
    return SessionService(db, ttl_seconds=settings.session_ttl_seconds)


@router.post("/v1/auth/login", response_model=SessionOut, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginIn,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> SessionOut:
    # Stand-in for an identity provider; real deployments leave this disabled.
    if not settings.demo_login_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    token, session = await with_db_timeout(service.open(payload.user_id))
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return SessionOut(user_id=session.user_id, expires_at=session.expires_at, token=token)


@router.post("/v1/auth/logout", status_code=status.HTTP_200_OK)
async def logout(
    request: Request,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> dict[str, bool]:
    await with_db_timeout(service.close(session_token_from(request)))
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return {"success": True}


@router.get("/v1/users/me", response_model=UserOut)
async def current_user(user_id: str = Depends(get_current_user_id)) -> UserOut:
    return UserOut(id=user_id)
