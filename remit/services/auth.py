import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from remit.models.session import UserSession
from remit.repositories.session_repository import SessionRepository
from remit.utils.time import utcnow

logger = logging.getLogger(__name__)


class AuthResolver(Protocol):
    """Turns a session credential into a user id, or None if it is not valid."""

    async def resolve(self, token: str | None) -> str | None: ...


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionAuthResolver:
    def __init__(self, db: AsyncSession):
        self.repository = SessionRepository(db)

    async def resolve(self, token: str | None) -> str | None:
        if not token:
            return None
        session = await self.repository.get_active(hash_token(token), now=utcnow())
        if session is None:
            return None
        return session.user_id


class SessionService:
    def __init__(self, db: AsyncSession, *, ttl_seconds: int):
        self.repository = SessionRepository(db)
        self.ttl_seconds = ttl_seconds

    async def open(self, user_id: str) -> tuple[str, UserSession]:
        token = secrets.token_urlsafe(32)
        now = utcnow()
        session = await self.repository.create(
            token_hash=hash_token(token),
            user_id=user_id,
            now=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        logger.info("Session opened. user_id=%s", user_id)
        return token, session

    async def close(self, token: str | None) -> bool:
        if not token:
            return False
        return await self.repository.revoke(hash_token(token), now=utcnow())
