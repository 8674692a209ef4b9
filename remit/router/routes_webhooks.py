import hmac
import logging
from time import perf_counter_ns

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from remit.dto.settlement import SettlementStatusAck, SettlementStatusIn
from remit.router.deps import with_db_timeout
from remit.services.settlement import SettlementService
from remit.utils.config import settings
from remit.utils.db import get_db
from remit.utils.errors import AuthorizationError

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def get_service(db: AsyncSession = Depends(get_db)) -> SettlementService:
    return SettlementService(db)


def verify_settlement_token(
    x_settlement_token: str | None = Header(default=None, alias="X-Settlement-Token"),
) -> None:
    expected = settings.settlement_webhook_token
    if not expected:
        raise AuthorizationError("Settlement webhook is not configured", forbidden=True)
    if not x_settlement_token or not hmac.compare_digest(x_settlement_token, expected):
        logger.warning("Settlement webhook rejected: bad token")
        raise AuthorizationError("Invalid settlement token")


@router.post(
    "/settlement",
    response_model=SettlementStatusAck,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(verify_settlement_token)],
)
async def receive_settlement_status(
    payload: SettlementStatusIn,
    service: SettlementService = Depends(get_service),
) -> SettlementStatusAck:
    started_ns = perf_counter_ns()
    result = await with_db_timeout(service.apply_status_update(payload))
    update = result.unwrap()

    elapsed_ms = (perf_counter_ns() - started_ns) / 1_000_000
    return SettlementStatusAck(
        transaction_id=update.transaction.transaction_id,
        status=update.transaction.status,
        changed=update.changed,
        response_time_ms=round(elapsed_ms, 3),
    )
