import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.settlement import SettlementStatusIn
from remit.dto.transaction import TransactionOut
from remit.models.transaction import Transaction
from remit.repositories.transaction_repository import TransactionRepository
from remit.utils.enums import TransactionStatus
from remit.utils.errors import ConflictError, NotFoundError, PaymentError
from remit.utils.result import Err, Ok, Result
from remit.utils.runtime import TaskTracker
from remit.utils.time import utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


class SettlementClient(Protocol):
    async def submit(self, transaction: TransactionOut) -> None: ...

    async def aclose(self) -> None: ...


class HttpSettlementClient:
    def __init__(self, base_url: str, *, timeout: float, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def submit(self, transaction: TransactionOut) -> None:
        response = await self._client.post(
            "/v1/settlements",
            json=transaction.model_dump(mode="json"),
            headers={"Idempotency-Key": transaction.transaction_id},
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingSettlementClient:
    """Stand-in used when no settlement URL is configured."""

    async def submit(self, transaction: TransactionOut) -> None:
        logger.info(
            "No settlement URL configured; hand-off recorded only. transaction_id=%s",
            transaction.transaction_id,
        )

    async def aclose(self) -> None:
        return None


def build_settlement_client(settings) -> SettlementClient:
    if settings.settlement_url:
        return HttpSettlementClient(settings.settlement_url, timeout=settings.settlement_timeout_seconds)
    return LoggingSettlementClient()


async def hand_off_transaction(
    transaction_id: str, *, client: SettlementClient, session_factory: SessionFactory
) -> bool:
    async with session_factory() as db:
        repository = TransactionRepository(db)
        transaction = await repository.get_by_transaction_id(transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING:
            return False
        if transaction.handed_off_at is not None:
            return False

        try:
            await client.submit(TransactionOut.model_validate(transaction))
        except asyncio.CancelledError:
            # Row stays Pending with the reason recorded; it is eligible for a later hand-off.
            await repository.mark_handoff_failed(transaction, message="Hand-off interrupted by shutdown")
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Settlement hand-off failed. transaction_id=%s", transaction_id)
            await repository.mark_handoff_failed(transaction, message=str(exc) or exc.__class__.__name__)
            return False

        await repository.mark_handed_off(transaction, now=utcnow())
        logger.info("Handed off to settlement. transaction_id=%s", transaction_id)
        return True


def schedule_handoff(
    transaction_id: str,
    *,
    tracker: TaskTracker,
    client: SettlementClient,
    session_factory: SessionFactory,
    delay_seconds: float = 0.0,
) -> asyncio.Task:
    async def _run() -> bool:
        if delay_seconds > 0:
            # Cancelled here on shutdown: nothing was read or sent yet.
            await asyncio.sleep(delay_seconds)
        return await hand_off_transaction(transaction_id, client=client, session_factory=session_factory)

    task = asyncio.create_task(_run())
    tracker.track(task)

    def _log_task_result(done_task: asyncio.Task) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            logger.error(
                "Settlement hand-off task crashed. transaction_id=%s", transaction_id, exc_info=exc
            )

    task.add_done_callback(_log_task_result)
    return task


async def resume_pending_handoffs(
    *,
    tracker: TaskTracker,
    client: SettlementClient,
    session_factory: SessionFactory,
    delay_seconds: float = 0.0,
    limit: int = 500,
) -> list[asyncio.Task]:
    """Re-schedule hand-offs for Pending rows settlement never accepted.

    Picks up rows left behind by a failed attempt or by the previous process
    stopping first.
    """
    async with session_factory() as db:
        transaction_ids = await TransactionRepository(db).list_awaiting_handoff(limit=limit)
    if transaction_ids:
        logger.info("Resuming settlement hand-offs. count=%s", len(transaction_ids))
    return [
        schedule_handoff(
            transaction_id,
            tracker=tracker,
            client=client,
            session_factory=session_factory,
            delay_seconds=delay_seconds,
        )
        for transaction_id in transaction_ids
    ]


@dataclass(frozen=True)
class StatusUpdate:
    transaction: Transaction
    changed: bool


class SettlementService:
    def __init__(self, db: AsyncSession):
        self.repository = TransactionRepository(db)

    async def apply_status_update(self, payload: SettlementStatusIn) -> Result[StatusUpdate, PaymentError]:
        transaction = await self.repository.get_by_transaction_id(payload.transaction_id)
        if transaction is None:
            return Err(NotFoundError("Transaction not found"))

        current = transaction.status
        if current == payload.status:
            # Redelivered webhook: acknowledge without touching the row.
            return Ok(StatusUpdate(transaction=transaction, changed=False))
        if not current.can_transition_to(payload.status):
            logger.warning(
                "Rejected settlement status transition. transaction_id=%s current=%s requested=%s",
                payload.transaction_id,
                current,
                payload.status,
            )
            return Err(ConflictError(
                f"Cannot move a {current} transaction to {payload.status}",
                code="invalid_transition",
            ))

        applied = await self.repository.compare_and_set_status(
            payload.transaction_id,
            expected=current,
            target=payload.status,
            reason=payload.reason,
            now=utcnow(),
        )
        if not applied:
            return Err(ConflictError(
                "Transaction status changed concurrently; re-read and retry",
                code="concurrent_update",
            ))

        logger.info(
            "Settlement status applied. transaction_id=%s from=%s to=%s",
            payload.transaction_id,
            current,
            payload.status,
        )
        await self.repository.reload(transaction)
        return Ok(StatusUpdate(transaction=transaction, changed=True))
