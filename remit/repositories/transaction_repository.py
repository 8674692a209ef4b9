from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.payment import PaymentRequest
from remit.models.transaction import IssuedTransactionId, Transaction
from remit.utils.db import dialect_insert
from remit.utils.enums import TransactionStatus


class TransactionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_pending_if_absent(
        self,
        *,
        transaction_id: str,
        user_id: str,
        request: PaymentRequest,
        fee: Decimal,
        total: Decimal,
        idempotency_key: str,
        payload_hash: str,
        now: datetime,
    ) -> str | None:
        # INSERT ... ON CONFLICT DO NOTHING on (user_id, idempotency_key) is the
        # atomic check-and-insert; a concurrent twin waits on the unique index.
        insert_stmt = (
            dialect_insert(self.db)(Transaction)
            .values(
                transaction_id=transaction_id,
                user_id=user_id,
                amount=request.amount,
                fee=fee,
                total=total,
                currency=str(request.currency),
                recipient_account=request.recipient_account,
                swift_code=request.swift_code,
                reference=request.reference,
                status=TransactionStatus.PENDING,
                idempotency_key=idempotency_key,
                payload_hash=payload_hash,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "idempotency_key"])
            .returning(Transaction.transaction_id)
        )
        inserted_transaction_id = (await self.db.execute(insert_stmt)).scalar_one_or_none()
        if inserted_transaction_id is None:
            await self.db.rollback()
            return None
        # Same unit of work: an id already issued once fails the whole commit.
        self.db.add(IssuedTransactionId(transaction_id=inserted_transaction_id, issued_at=now))
        await self.db.commit()
        return inserted_transaction_id

    async def get_by_transaction_id(self, transaction_id: str) -> Transaction | None:
        return (await self.db.execute(
            select(Transaction).where(Transaction.transaction_id == transaction_id)
        )).scalar_one_or_none()

    async def get_by_idempotency_key(self, *, user_id: str, idempotency_key: str) -> Transaction | None:
        return (await self.db.execute(
            select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.idempotency_key == idempotency_key,
            )
        )).scalar_one_or_none()

    async def list_for_user(self, user_id: str, *, limit: int, offset: int = 0) -> list[Transaction]:
        rows = (await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )).scalars().all()
        return list(rows)

    async def list_awaiting_handoff(self, *, limit: int) -> list[str]:
        rows = (await self.db.execute(
            select(Transaction.transaction_id)
            .where(Transaction.status == TransactionStatus.PENDING, Transaction.handed_off_at.is_(None))
            .order_by(Transaction.id)
            .limit(limit)
        )).scalars().all()
        return list(rows)

    async def compare_and_set_status(
        self,
        transaction_id: str,
        *,
        expected: TransactionStatus,
        target: TransactionStatus,
        reason: str | None,
        now: datetime,
    ) -> bool:
        # Guarded on the current status so concurrent updates cannot both apply.
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.transaction_id == transaction_id, Transaction.status == expected)
            .values(status=target, status_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def reload(self, transaction: Transaction) -> None:
        await self.db.refresh(transaction)

    async def mark_handed_off(self, transaction: Transaction, *, now: datetime) -> None:
        transaction.handed_off_at = now
        transaction.handoff_error = None
        await self.db.commit()

    async def mark_handoff_failed(self, transaction: Transaction, *, message: str) -> None:
        transaction.handoff_error = message
        await self.db.commit()
