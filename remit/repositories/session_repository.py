from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from remit.models.session import UserSession


class SessionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, *, token_hash: str, user_id: str, now: datetime, expires_at: datetime) -> UserSession:
        session = UserSession(token_hash=token_hash, user_id=user_id, created_at=now, expires_at=expires_at)
        self.db.add(session)
        await self.db.commit()
        return session

    async def get_active(self, token_hash: str, *, now: datetime) -> UserSession | None:
        # Expiry is compared in SQL so naive SQLite timestamps never meet aware ones.
        return (await self.db.execute(
            select(UserSession).where(
                UserSession.token_hash == token_hash,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
            )
        )).scalar_one_or_none()

    async def revoke(self, token_hash: str, *, now: datetime) -> bool:
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.token_hash == token_hash, UserSession.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1
