import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.payment import REQUIRED, TOO_LONG
from remit.models.transaction import Transaction
from remit.repositories.transaction_repository import TransactionRepository
from remit.services.confirmation import ConfirmationGate, PaymentConfirmation
from remit.utils.enums import TransactionStatus
from remit.utils.errors import AuthorizationError, ConflictError, PaymentError, RetryableError, ValidationError
from remit.utils.idempotency import IDEMPOTENCY_KEY_MAX_LENGTH, payload_hash
from remit.utils.ids import new_transaction_id
from remit.utils.result import Err, Ok, Result
from remit.utils.time import utcnow

logger = logging.getLogger(__name__)

CONFIRMATION_REQUIRED = "confirmation_required"


@dataclass(frozen=True)
class SubmissionReceipt:
    transaction_id: str
    status: TransactionStatus
    replayed: bool
    currency: str
    amount: Decimal
    fee: Decimal
    total: Decimal
    created_at: datetime
    # Pending and not yet accepted by settlement.
    awaiting_handoff: bool = False

    @classmethod
    def from_transaction(cls, transaction: Transaction, *, replayed: bool) -> "SubmissionReceipt":
        return cls(
            transaction_id=transaction.transaction_id,
            status=transaction.status,
            replayed=replayed,
            currency=transaction.currency,
            amount=transaction.amount,
            fee=transaction.fee,
            total=transaction.total,
            created_at=transaction.created_at,
            awaiting_handoff=(
                transaction.status == TransactionStatus.PENDING and transaction.handed_off_at is None
            ),
        )


class SubmissionHandler:
    """Commits a confirmed payment exactly once and issues its receipt."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        gate: ConfirmationGate,
        id_factory: Callable[[], str] = new_transaction_id,
        max_id_attempts: int = 3,
        retry_after_seconds: int = 1,
    ):
        self.db = db
        self.repository = TransactionRepository(db)
        self.gate = gate
        self.id_factory = id_factory
        self.max_id_attempts = max_id_attempts
        self.retry_after_seconds = retry_after_seconds

    async def submit(
        self,
        confirmation: PaymentConfirmation,
        *,
        user_id: str | None,
        idempotency_key: str | None,
        quoted_total: Decimal | None = None,
    ) -> Result[SubmissionReceipt, PaymentError]:
        if not user_id:
            return Err(AuthorizationError())
        if not confirmation.confirmed:
            return Err(ValidationError.single(
                "confirmed", CONFIRMATION_REQUIRED, "Payment must be explicitly confirmed before submission"
            ))
        if not idempotency_key:
            return Err(ValidationError.single(
                "idempotency_key", REQUIRED, "An Idempotency-Key header or a nonce is required"
            ))
        if len(idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
            return Err(ValidationError.single(
                "idempotency_key", TOO_LONG, f"Idempotency key must be at most {IDEMPOTENCY_KEY_MAX_LENGTH} characters"
            ))

        # The fee schedule is ours: recompute instead of trusting what was shown.
        summary = self.gate.summarize(confirmation.request)
        if summary != confirmation.summary or (quoted_total is not None and quoted_total != summary.total):
            return Err(ConflictError(
                "The fee or total changed since it was confirmed; review and confirm again",
                code="quote_changed",
            ))

        try:
            return await self._commit(confirmation, user_id=user_id, idempotency_key=idempotency_key)
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Payment persistence failed. user_id=%s", user_id)
            return Err(RetryableError(
                "The payment could not be recorded; nothing was submitted. Retry with the same idempotency key.",
                retry_after_seconds=self.retry_after_seconds,
            ))

    async def _commit(
        self, confirmation: PaymentConfirmation, *, user_id: str, idempotency_key: str
    ) -> Result[SubmissionReceipt, PaymentError]:
        request = confirmation.request
        summary = confirmation.summary
        digest = payload_hash(request)

        for attempt in range(1, self.max_id_attempts + 1):
            now = utcnow()
            transaction_id = self.id_factory()
            try:
                created = await self.repository.create_pending_if_absent(
                    transaction_id=transaction_id,
                    user_id=user_id,
                    request=request,
                    fee=summary.fee,
                    total=summary.total,
                    idempotency_key=idempotency_key,
                    payload_hash=digest,
                    now=now,
                )
            except IntegrityError:
                # Only the transaction id can collide here; the idempotency key is ON CONFLICT.
                await self.db.rollback()
                logger.warning(
                    "Transaction id already issued; regenerating. transaction_id=%s attempt=%s",
                    transaction_id,
                    attempt,
                )
                continue

            if created is not None:
                logger.info(
                    "Payment accepted. transaction_id=%s user_id=%s currency=%s total=%s",
                    created,
                    user_id,
                    request.currency,
                    summary.total,
                )
                return Ok(SubmissionReceipt(
                    transaction_id=created,
                    status=TransactionStatus.PENDING,
                    replayed=False,
                    currency=str(request.currency),
                    amount=request.amount,
                    fee=summary.fee,
                    total=summary.total,
                    created_at=now,
                    awaiting_handoff=True,
                ))

            existing = await self.repository.get_by_idempotency_key(user_id=user_id, idempotency_key=idempotency_key)
            if existing is None:
                return Err(RetryableError(
                    "The payment state could not be determined; retry with the same idempotency key.",
                    retry_after_seconds=self.retry_after_seconds,
                ))
            if existing.payload_hash != digest:
                logger.warning(
                    "Idempotency key reused with a different payload. "
                    "user_id=%s transaction_id=%s existing_payload_hash=%s new_payload_hash=%s",
                    user_id,
                    existing.transaction_id,
                    existing.payload_hash,
                    digest,
                )
                return Err(ConflictError(
                    "This idempotency key was already used for a different payment",
                    code="idempotency_conflict",
                ))
            logger.info("Idempotent replay. transaction_id=%s user_id=%s", existing.transaction_id, user_id)
            return Ok(SubmissionReceipt.from_transaction(existing, replayed=True))

        logger.error("Could not allocate a unique transaction id after %s attempts", self.max_id_attempts)
        return Err(RetryableError(
            "A transaction id could not be allocated; retry with the same idempotency key.",
            retry_after_seconds=self.retry_after_seconds,
        ))
