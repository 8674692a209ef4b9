import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.payment import ValidationLimits
from remit.services.auth import AuthResolver, SessionAuthResolver
from remit.services.confirmation import ConfirmationGate
from remit.services.settlement import SettlementClient
from remit.utils.config import settings
from remit.utils.db import get_db
from remit.utils.errors import AuthorizationError, RetryableError
from remit.utils.runtime import TaskTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_auth_resolver(db: AsyncSession = Depends(get_db)) -> AuthResolver:
    return SessionAuthResolver(db)


def session_token_from(request: Request) -> str | None:
    authorization = request.headers.get("Authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[len("bearer "):].strip() or None
    return request.cookies.get(settings.session_cookie_name)


async def get_current_user_id(request: Request, resolver: AuthResolver = Depends(get_auth_resolver)) -> str:
    user_id = await with_db_timeout(resolver.resolve(session_token_from(request)))
    if user_id is None:
        raise AuthorizationError()
    return user_id


def get_confirmation_gate() -> ConfirmationGate:
    return ConfirmationGate(fee_rate_bps=settings.fee_rate_bps, default_locale=settings.default_locale)


def get_validation_limits() -> ValidationLimits:
    return ValidationLimits.from_settings(settings)


def get_settlement_client(request: Request) -> SettlementClient:
    return request.app.state.settlement_client


def get_task_tracker(request: Request) -> TaskTracker:
    return request.app.state.task_tracker


async def with_db_timeout(awaitable: Awaitable[T]) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.db_operation_timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.exception("Database operation timed out")
        raise RetryableError(
            "Database operation timed out", retry_after_seconds=settings.retry_after_seconds
        ) from exc
    except SQLAlchemyError as exc:
        logger.exception("Database error")
        raise RetryableError("Database unavailable", retry_after_seconds=settings.retry_after_seconds) from exc
