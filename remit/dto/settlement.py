from pydantic import BaseModel, ConfigDict, Field

from remit.utils.enums import TransactionStatus


class SettlementStatusIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_id: str = Field(min_length=1, max_length=64)
    status: TransactionStatus
    reason: str | None = Field(default=None, max_length=500)


class SettlementStatusAck(BaseModel):
    acknowledged: bool = True
    transaction_id: str
    status: TransactionStatus
    changed: bool
    response_time_ms: float
