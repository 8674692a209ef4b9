from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.transaction import TransactionOut
from remit.repositories.transaction_repository import TransactionRepository
from remit.utils.errors import AuthorizationError, NotFoundError, PaymentError
from remit.utils.result import Err, Ok, Result


class TransactionService:
    def __init__(self, db: AsyncSession):
        self.repository = TransactionRepository(db)

    async def get_for_owner(self, transaction_id: str, *, user_id: str) -> Result[TransactionOut, PaymentError]:
        transaction = await self.repository.get_by_transaction_id(transaction_id)
        if transaction is None:
            return Err(NotFoundError("Transaction not found"))
        if transaction.user_id != user_id:
            return Err(AuthorizationError("This transaction belongs to another user", forbidden=True))
        return Ok(TransactionOut.model_validate(transaction))

    async def list_for_owner(self, user_id: str, *, limit: int, offset: int = 0) -> list[TransactionOut]:
        transactions = await self.repository.list_for_user(user_id, limit=limit, offset=offset)
        return [TransactionOut.model_validate(txn) for txn in transactions]
