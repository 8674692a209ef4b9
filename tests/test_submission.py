import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select, update

from remit.models.transaction import IssuedTransactionId, Transaction
from remit.services.confirmation import ConfirmationGate
from remit.services.submission import SubmissionHandler
from remit.services.validator import validate_payment_request
from remit.utils import db as db_core
from remit.utils.enums import TransactionStatus
from remit.utils.errors import AuthorizationError, ConflictError, RetryableError, ValidationError
from remit.utils.result import Err, Ok
from remit.utils.time import utcnow

GATE = ConfirmationGate(fee_rate_bps=200)


@pytest.fixture
def confirmed(payment_payload):
    def _confirmed(**overrides):
        request = validate_payment_request(payment_payload(**overrides)).unwrap()
        return GATE.prepare(request).confirm()

    return _confirmed


def _ids(*values):
    iterator = iter(values)
    return lambda: next(iterator)


async def _submit(confirmation, *, user_id="user_alice", key="key-1", **handler_options):
    async with db_core.SessionLocal() as db:
        handler = SubmissionHandler(db, gate=handler_options.pop("gate", GATE), **handler_options)
        return await handler.submit(confirmation, user_id=user_id, idempotency_key=key)


async def _count(model) -> int:
    async with db_core.SessionLocal() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_submit_records_pending_transaction(confirmed, test_engine):
    result = await _submit(confirmed())

    assert isinstance(result, Ok)
    receipt = result.value
    assert receipt.status == TransactionStatus.PENDING
    assert receipt.replayed is False
    assert (receipt.amount, receipt.fee, receipt.total) == (Decimal("1000.00"), Decimal("20.00"), Decimal("1020.00"))

    async with db_core.SessionLocal() as db:
        stored = (await db.execute(select(Transaction))).scalar_one()
        issued = (await db.execute(select(IssuedTransactionId))).scalar_one()
    assert stored.transaction_id == receipt.transaction_id == issued.transaction_id
    assert stored.idempotency_key == "key-1"
    assert len(stored.payload_hash) == 64


@pytest.mark.asyncio
async def test_replay_and_conflict(confirmed, test_engine):
    first = (await _submit(confirmed())).unwrap()
    replay = (await _submit(confirmed(amount="1000", currency="usd"))).unwrap()
    conflict = await _submit(confirmed(amount="1000.01"))

    assert replay.replayed is True
    assert replay.transaction_id == first.transaction_id
    assert isinstance(conflict, Err)
    assert isinstance(conflict.error, ConflictError)
    assert conflict.error.code == "idempotency_conflict"
    assert await _count(Transaction) == 1


@pytest.mark.asyncio
async def test_replay_reports_outstanding_hand_off(test_engine, confirmed):
    first = (await _submit(confirmed())).unwrap()
    before_hand_off = (await _submit(confirmed())).unwrap()
    async with db_core.SessionLocal() as db:
        await db.execute(update(Transaction).values(handed_off_at=utcnow()))
        await db.commit()
    after_hand_off = (await _submit(confirmed())).unwrap()

    assert first.awaiting_handoff is True
    assert before_hand_off.awaiting_handoff is True
    assert after_hand_off.replayed is True
    assert after_hand_off.awaiting_handoff is False


@pytest.mark.asyncio
async def test_unconfirmed_is_rejected(payment_payload, test_engine):
    request = validate_payment_request(payment_payload()).unwrap()
    result = await _submit(GATE.prepare(request))

    assert isinstance(result.error, ValidationError)
    assert result.error.field_errors[0].code == "confirmation_required"
    assert await _count(Transaction) == 0


@pytest.mark.asyncio
async def test_missing_user_is_rejected(confirmed, test_engine):
    result = await _submit(confirmed(), user_id=None)
    assert isinstance(result.error, AuthorizationError)


@pytest.mark.asyncio
async def test_key_must_be_present_and_bounded(confirmed, test_engine):
    missing = await _submit(confirmed(), key="")
    too_long = await _submit(confirmed(), key="k" * 256)

    assert missing.error.field_errors[0].code == "required"
    assert too_long.error.field_errors[0].code == "too_long"
    assert await _count(Transaction) == 0


@pytest.mark.asyncio
async def test_changed_fee_schedule_is_a_conflict(confirmed, test_engine):
    result = await _submit(confirmed(), gate=ConfirmationGate(fee_rate_bps=300))

    assert isinstance(result.error, ConflictError)
    assert result.error.code == "quote_changed"
    assert await _count(Transaction) == 0


@pytest.mark.asyncio
async def test_colliding_id_is_regenerated(confirmed, test_engine):
    taken = "01890a5d-ac96-774b-bcce-b302099a8057"
    fresh = "01890a5d-ac96-774b-bcce-b302099a8058"
    await _submit(confirmed(), key="key-1", id_factory=_ids(taken))

    result = await _submit(confirmed(), key="key-2", id_factory=_ids(taken, fresh))

    assert result.unwrap().transaction_id == fresh
    assert await _count(Transaction) == 2


@pytest.mark.asyncio
async def test_issued_id_never_reused_after_row_removal(confirmed, test_engine):
    taken = "01890a5d-ac96-774b-bcce-b302099a8057"
    fresh = "01890a5d-ac96-774b-bcce-b302099a8058"
    await _submit(confirmed(), key="key-1", id_factory=_ids(taken))
    async with db_core.SessionLocal() as db:
        await db.execute(delete(Transaction))
        await db.commit()

    result = await _submit(confirmed(), key="key-2", id_factory=_ids(taken, fresh))

    assert result.unwrap().transaction_id == fresh
    assert await _count(IssuedTransactionId) == 2


@pytest.mark.asyncio
async def test_id_allocation_gives_up_with_retryable_error(confirmed, test_engine):
    taken = "01890a5d-ac96-774b-bcce-b302099a8057"
    await _submit(confirmed(), key="key-1", id_factory=_ids(taken))

    result = await _submit(
        confirmed(), key="key-2", id_factory=lambda: taken, max_id_attempts=2, retry_after_seconds=7
    )

    assert isinstance(result.error, RetryableError)
    assert result.error.retry_after_seconds == 7
    assert await _count(Transaction) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_create_one_transaction(confirmed, test_engine, postgres_only):
    results = await asyncio.gather(*(_submit(confirmed()) for _ in range(5)))

    receipts = [result.unwrap() for result in results]
    assert len({receipt.transaction_id for receipt in receipts}) == 1
    assert sum(not receipt.replayed for receipt in receipts) == 1
    assert await _count(Transaction) == 1
