from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.profile import ProfileIn
from remit.models.profile import UserProfile
from remit.utils.db import dialect_insert


class ProfileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_user(self, user_id: str) -> UserProfile | None:
        return (await self.db.execute(
            select(UserProfile).where(UserProfile.user_id == user_id)
        )).scalar_one_or_none()

    async def upsert(self, user_id: str, profile: ProfileIn, *, now: datetime) -> UserProfile:
        insert_stmt = dialect_insert(self.db)(UserProfile).values(
            user_id=user_id,
            is_verified=False,
            created_at=now,
            updated_at=now,
            **profile.model_dump(),
        )
        # Changed details have to be verified again.
        insert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={**profile.model_dump(), "is_verified": False, "updated_at": now},
        )
        await self.db.execute(insert_stmt)
        await self.db.commit()
        return (await self.db.execute(
            select(UserProfile)
            .where(UserProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )).scalar_one()
