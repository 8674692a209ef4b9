from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.transaction import TransactionListOut, TransactionOut
from remit.router.deps import get_current_user_id, with_db_timeout
from remit.services.transaction_service import TransactionService
from remit.utils.db import get_db

router = APIRouter(prefix="/v1/transactions", tags=["transactions"])


def get_service(db: AsyncSession = Depends(get_db)) -> TransactionService:
    return TransactionService(db)


@router.get("", response_model=TransactionListOut, status_code=status.HTTP_200_OK)
async def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    service: TransactionService = Depends(get_service),
) -> TransactionListOut:
    items = await with_db_timeout(service.list_for_owner(user_id, limit=limit, offset=offset))
    return TransactionListOut(items=items, count=len(items))


@router.get("/{transaction_id}", response_model=TransactionOut, status_code=status.HTTP_200_OK)
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    service: TransactionService = Depends(get_service),
) -> TransactionOut:
    result = await with_db_timeout(service.get_for_owner(transaction_id, user_id=user_id))
    return result.unwrap()
