from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, Response, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.payment import MoneyDisplay, QuoteOut, ReceiptOut, SubmissionControls, ValidationLimits
from remit.router.deps import (
    get_confirmation_gate,
    get_current_user_id,
    get_settlement_client,
    get_task_tracker,
    get_validation_limits,
    with_db_timeout,
)
from remit.services.confirmation import ConfirmationGate
from remit.services.settlement import SettlementClient, schedule_handoff
from remit.services.submission import SubmissionHandler
from remit.services.validator import field_errors_from, validate_payment_request
from remit.utils import db as db_core
from remit.utils.config import settings
from remit.utils.db import get_db
from remit.utils.errors import ValidationError
from remit.utils.idempotency import resolve_idempotency_key
from remit.utils.result import Err
from remit.utils.runtime import TaskTracker

router = APIRouter(prefix="/v1/payments", tags=["payments"])


def _preferred_locale(locale: str | None, accept_language: str | None) -> str | None:
    if locale:
        return locale
    if accept_language:
        first = accept_language.split(",", 1)[0].split(";", 1)[0].strip()
        return first or None
    return None


@router.post(
    "/quote",
    response_model=QuoteOut,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(get_current_user_id)],
)
async def quote_payment(
    payload: Any = Body(...),
    locale: str | None = Query(default=None, max_length=35),
    accept_language: str | None = Header(default=None),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
    limits: ValidationLimits = Depends(get_validation_limits),
) -> QuoteOut:
    request = validate_payment_request(payload, limits).unwrap()
    confirmation = gate.prepare(request, _preferred_locale(locale, accept_language))
    summary = confirmation.summary
    return QuoteOut(
        currency=summary.currency,
        principal=summary.principal,
        fee=summary.fee,
        total=summary.total,
        fee_rate_bps=summary.fee_rate_bps,
        locale=confirmation.locale,
        display=MoneyDisplay(**summary.display(confirmation.locale)),
        confirmation_message=confirmation.message(),
        confirmed=confirmation.confirmed,
    )


@router.post(
    "",
    response_model=ReceiptOut,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": ReceiptOut, "description": "Idempotent replay of an earlier submission"}},
)
async def submit_payment(
    response: Response,
    payload: Any = Body(...),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
    limits: ValidationLimits = Depends(get_validation_limits),
    settlement_client: SettlementClient = Depends(get_settlement_client),
    tracker: TaskTracker = Depends(get_task_tracker),
) -> ReceiptOut:
    validated = validate_payment_request(payload, limits)
    field_errors = list(validated.error.field_errors) if isinstance(validated, Err) else []
    controls = SubmissionControls()
    if isinstance(payload, dict):
        try:
            controls = SubmissionControls.model_validate(payload)
        except PydanticValidationError as exc:
            field_errors.extend(field_errors_from(exc))
    if field_errors:
        raise ValidationError(field_errors)

    confirmation = gate.prepare(validated.unwrap())
    if controls.confirmed:
        confirmation.confirm()

    handler = SubmissionHandler(db, gate=gate, retry_after_seconds=settings.retry_after_seconds)
    result = await with_db_timeout(handler.submit(
        confirmation,
        user_id=user_id,
        idempotency_key=resolve_idempotency_key(user_id=user_id, header_key=idempotency_key, nonce=controls.nonce),
        quoted_total=controls.quoted_total,
    ))
    receipt = result.unwrap()

    if receipt.replayed:
        response.status_code = status.HTTP_200_OK
    if receipt.awaiting_handoff:
        # A replay retries a hand-off that failed or was interrupted. Settlement
        # dedupes on the transaction id if an earlier attempt is still in flight.
        schedule_handoff(
            receipt.transaction_id,
            tracker=tracker,
            client=settlement_client,
            session_factory=db_core.SessionLocal,
            delay_seconds=settings.settlement_handoff_delay_seconds,
        )
    return ReceiptOut(**asdict(receipt))
