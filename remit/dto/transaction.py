from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_serializer

from remit.utils.enums import TransactionStatus
from remit.utils.time import as_utc


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    amount: Decimal
    fee: Decimal
    total: Decimal
    currency: str
    recipient_account: str
    swift_code: str
    reference: str | None
    status: TransactionStatus
    status_reason: str | None
    created_at: datetime
    updated_at: datetime

    @field_serializer("amount", "fee", "total", when_used="json")
    def serialize_money(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @field_serializer("created_at", "updated_at", when_used="json")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)


class TransactionListOut(BaseModel):
    items: list[TransactionOut]
    count: int
