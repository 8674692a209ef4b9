from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.profile import ProfileIn, ProfileOut
from remit.router.deps import get_current_user_id, with_db_timeout
from remit.services.profile_service import ProfileService
from remit.utils.db import get_db

router = APIRouter(prefix="/v1/profile", tags=["profile"])


def get_service(db: AsyncSession = Depends(get_db)) -> ProfileService:
    return ProfileService(db)


@router.get("", response_model=ProfileOut, status_code=status.HTTP_200_OK)
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_service),
) -> ProfileOut:
    result = await with_db_timeout(service.get(user_id))
    return result.unwrap()


@router.post("", response_model=ProfileOut, status_code=status.HTTP_200_OK)
async def save_profile(
    payload: ProfileIn,
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_service),
) -> ProfileOut:
    return await with_db_timeout(service.save(user_id, payload))
