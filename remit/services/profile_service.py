import logging

from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.profile import ProfileIn, ProfileOut
from remit.repositories.profile_repository import ProfileRepository
from remit.utils.errors import NotFoundError, PaymentError
from remit.utils.result import Err, Ok, Result
from remit.utils.time import utcnow

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, db: AsyncSession):
        self.repository = ProfileRepository(db)

    async def get(self, user_id: str) -> Result[ProfileOut, PaymentError]:
        profile = await self.repository.get_for_user(user_id)
        if profile is None:
            return Err(NotFoundError("Profile not found"))
        return Ok(ProfileOut.model_validate(profile))

    async def save(self, user_id: str, payload: ProfileIn) -> ProfileOut:
        profile = await self.repository.upsert(user_id, payload, now=utcnow())
        logger.info("Profile saved. user_id=%s username=%s", user_id, profile.username)
        return ProfileOut.model_validate(profile)
