import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, update

from remit.models.transaction import Transaction
from remit.services.settlement import (
    HttpSettlementClient,
    hand_off_transaction,
    resume_pending_handoffs,
    schedule_handoff,
)
from remit.utils import db as db_core
from remit.utils.config import settings
from remit.utils.enums import TransactionStatus
from remit.utils.runtime import TaskTracker
from remit.utils.time import utcnow


async def _load(transaction_id: str) -> Transaction:
    async with db_core.SessionLocal() as db:
        return (await db.execute(
            select(Transaction).where(Transaction.transaction_id == transaction_id)
        )).scalar_one()


async def _set(transaction_id: str, **values) -> None:
    async with db_core.SessionLocal() as db:
        await db.execute(update(Transaction).where(Transaction.transaction_id == transaction_id).values(**values))
        await db.commit()


def _create(create_pending, **kwargs) -> str:
    return asyncio.run(create_pending(**kwargs))


def _push(client, headers, transaction_id, status, reason=None):
    body = {"transaction_id": transaction_id, "status": status}
    if reason is not None:
        body["reason"] = reason
    return client.post("/v1/webhooks/settlement", json=body, headers=headers)


def test_status_moves_through_lifecycle(client, alice, webhook_headers, create_pending):
    transaction_id = _create(create_pending)

    verified = _push(client, webhook_headers, transaction_id, "Verified")
    sent = _push(client, webhook_headers, transaction_id, "Sent")

    assert verified.status_code == 200
    assert verified.json()["acknowledged"] is True
    assert verified.json()["changed"] is True
    assert verified.json()["response_time_ms"] >= 0
    assert sent.json()["status"] == "Sent"
    assert client.get(f"/v1/transactions/{transaction_id}", headers=alice).json()["status"] == "Sent"


def test_repeated_status_is_acknowledged_without_change(client, webhook_headers, create_pending):
    transaction_id = _create(create_pending)

    _push(client, webhook_headers, transaction_id, "Verified")
    repeated = _push(client, webhook_headers, transaction_id, "Verified")

    assert repeated.status_code == 200
    assert repeated.json()["changed"] is False
    assert repeated.json()["status"] == "Verified"


@pytest.mark.parametrize(
    ("path", "rejected"),
    [
        ([], "Sent"),
        (["Verified"], "Pending"),
        (["Verified", "Sent"], "Failed"),
        (["Failed"], "Verified"),
    ],
)
def test_illegal_transitions_rejected(client, webhook_headers, create_pending, path, rejected):
    transaction_id = _create(create_pending)
    for status in path:
        assert _push(client, webhook_headers, transaction_id, status).status_code == 200

    response = _push(client, webhook_headers, transaction_id, rejected)

    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"
    final = asyncio.run(_load(transaction_id))
    assert final.status == TransactionStatus(path[-1] if path else "Pending")


def test_failure_reason_is_recorded(client, alice, webhook_headers, create_pending):
    transaction_id = _create(create_pending)

    response = _push(client, webhook_headers, transaction_id, "Failed", reason="Beneficiary bank rejected")

    assert response.status_code == 200
    body = client.get(f"/v1/transactions/{transaction_id}", headers=alice).json()
    assert body["status"] == "Failed"
    assert body["status_reason"] == "Beneficiary bank rejected"


def test_unknown_transaction(client, webhook_headers):
    response = _push(client, webhook_headers, "01890a5d-ac96-774b-bcce-b302099a8057", "Verified")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_unknown_status_value(client, webhook_headers, create_pending):
    transaction_id = _create(create_pending)
    response = _push(client, webhook_headers, transaction_id, "Done")
    assert response.status_code == 422
    assert response.json()["fields"][0]["field"] == "status"


def test_webhook_token_required(client, create_pending):
    transaction_id = _create(create_pending)

    missing = _push(client, {}, transaction_id, "Verified")
    wrong = _push(client, {"X-Settlement-Token": "nope"}, transaction_id, "Verified")

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert asyncio.run(_load(transaction_id)).status == TransactionStatus.PENDING


def test_webhook_disabled_without_configured_token(client, webhook_headers, monkeypatch):
    monkeypatch.setattr(settings, "settlement_webhook_token", None)
    response = _push(client, webhook_headers, "anything", "Verified")
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


@pytest.mark.asyncio
async def test_hand_off_posts_transaction_once(test_engine, create_pending):
    transaction_id = await create_pending()
    requests: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"accepted": True})

    client = HttpSettlementClient("http://settlement.test", timeout=1.0, transport=httpx.MockTransport(_handler))
    try:
        assert await hand_off_transaction(transaction_id, client=client, session_factory=db_core.SessionLocal)
        assert not await hand_off_transaction(transaction_id, client=client, session_factory=db_core.SessionLocal)
    finally:
        await client.aclose()

    assert len(requests) == 1
    assert requests[0].url.path == "/v1/settlements"
    assert requests[0].headers["Idempotency-Key"] == transaction_id
    body = json.loads(requests[0].content)
    assert (body["transaction_id"], body["total"], body["status"]) == (transaction_id, "1020.00", "Pending")

    stored = await _load(transaction_id)
    assert stored.handed_off_at is not None
    assert stored.handoff_error is None
    assert stored.status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_failed_hand_off_is_recorded_and_retryable(test_engine, create_pending):
    transaction_id = await create_pending()
    responses = iter([httpx.Response(500), httpx.Response(202)])
    client = HttpSettlementClient(
        "http://settlement.test", timeout=1.0, transport=httpx.MockTransport(lambda request: next(responses))
    )
    try:
        assert not await hand_off_transaction(transaction_id, client=client, session_factory=db_core.SessionLocal)
        failed = await _load(transaction_id)
        assert failed.handed_off_at is None
        assert "500" in failed.handoff_error
        assert failed.status == TransactionStatus.PENDING

        assert await hand_off_transaction(transaction_id, client=client, session_factory=db_core.SessionLocal)
    finally:
        await client.aclose()

    assert (await _load(transaction_id)).handoff_error is None


class _StuckClient:
    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def submit(self, transaction) -> None:
        self.started.set()
        await asyncio.Event().wait()

    async def aclose(self) -> None:
        return None


@pytest.mark.asyncio
async def test_shutdown_interrupts_in_flight_hand_off(test_engine, create_pending):
    transaction_id = await create_pending()
    tracker = TaskTracker()
    client = _StuckClient()

    task = schedule_handoff(transaction_id, tracker=tracker, client=client, session_factory=db_core.SessionLocal)
    await asyncio.wait_for(client.started.wait(), timeout=5)
    await tracker.drain()

    assert task.cancelled()
    assert len(tracker) == 0
    stored = await _load(transaction_id)
    assert stored.status == TransactionStatus.PENDING
    assert stored.handed_off_at is None
    assert stored.handoff_error == "Hand-off interrupted by shutdown"


@pytest.mark.asyncio
async def test_delayed_hand_off_not_started_on_shutdown(test_engine, create_pending):
    transaction_id = await create_pending()
    tracker = TaskTracker()
    client = _StuckClient()

    schedule_handoff(
        transaction_id,
        tracker=tracker,
        client=client,
        session_factory=db_core.SessionLocal,
        delay_seconds=60,
    )
    await asyncio.sleep(0)
    await tracker.drain()

    assert tracker.shutting_down
    assert not client.started.is_set()
    stored = await _load(transaction_id)
    assert stored.handed_off_at is None
    assert stored.handoff_error is None


@pytest.mark.asyncio
async def test_resume_schedules_only_outstanding_hand_offs(test_engine, create_pending, settlement_client):
    outstanding = await create_pending(idempotency_key="key-1")
    handed_off = await create_pending(idempotency_key="key-2")
    failed = await create_pending(idempotency_key="key-3")
    await _set(handed_off, handed_off_at=utcnow())
    await _set(failed, status=TransactionStatus.FAILED)

    tasks = await resume_pending_handoffs(
        tracker=TaskTracker(), client=settlement_client, session_factory=db_core.SessionLocal
    )

    assert await asyncio.gather(*tasks) == [True]
    assert settlement_client.submitted == [outstanding]
    assert (await _load(outstanding)).handed_off_at is not None


def test_startup_resumes_interrupted_hand_off(
    app_settings, create_pending, settlement_client, wait_until, monkeypatch
):
    from remit import main as main_module

    transaction_id = _create(create_pending)
    asyncio.run(_set(transaction_id, handoff_error="Hand-off interrupted by shutdown"))
    monkeypatch.setattr(app_settings, "settlement_handoff_delay_seconds", 0.0)
    monkeypatch.setattr(main_module, "build_settlement_client", lambda _: settlement_client)

    with TestClient(main_module.app):
        assert wait_until(lambda: settlement_client.submitted == [transaction_id])
        assert wait_until(lambda: asyncio.run(_load(transaction_id)).handed_off_at is not None)

    stored = asyncio.run(_load(transaction_id))
    assert stored.handoff_error is None
    assert stored.status == TransactionStatus.PENDING
    assert settlement_client.calls == 1
