import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationInfo, field_serializer, field_validator
from pydantic_core import PydanticCustomError

from remit.utils.enums import Currency, TransactionStatus
from remit.utils.money import CENTS, to_minor_units
from remit.utils.time import as_utc

SWIFT_PATTERN = re.compile(r"^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}(?:[A-Z0-9]{3})?$")

# Reason codes surfaced to clients alongside each failing field.
REQUIRED = "required"
INVALID_TYPE = "invalid_type"
INVALID_NUMBER = "invalid_number"
NOT_POSITIVE = "not_positive"
PRECISION = "precision"
EXCEEDS_LIMIT = "exceeds_limit"
MINOR_UNIT = "minor_unit"
UNSUPPORTED_CURRENCY = "unsupported_currency"
INVALID_FORMAT = "invalid_format"
TOO_LONG = "too_long"

REASON_CODES = frozenset(
    {
        REQUIRED,
        INVALID_TYPE,
        INVALID_NUMBER,
        NOT_POSITIVE,
        PRECISION,
        EXCEEDS_LIMIT,
        MINOR_UNIT,
        UNSUPPORTED_CURRENCY,
        INVALID_FORMAT,
        TOO_LONG,
    }
)


@dataclass(frozen=True)
class ValidationLimits:
    max_amount: Decimal = Decimal("1000000.00")
    account_min_length: int = 8
    account_max_length: int = 12
    reference_max_length: int = 100

    @classmethod
    def from_settings(cls, settings: Any) -> "ValidationLimits":
        return cls(
            max_amount=settings.max_transaction_amount,
            account_min_length=settings.recipient_account_min_length,
            account_max_length=settings.recipient_account_max_length,
            reference_max_length=settings.reference_max_length,
        )


def _limits(info: ValidationInfo) -> ValidationLimits:
    context = info.context or {}
    return context.get("limits") or ValidationLimits()


def _require_str(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise PydanticCustomError(INVALID_TYPE, "{label} must be a string", {"label": label})
    return value.strip()


class PaymentRequest(BaseModel):
    """A validated, normalized payment request.

    Build it through ``remit.services.validator.validate_payment_request`` so
    that every failing field is reported at once with a reason code.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    # currency precedes amount so the amount check can see the minor unit.
    currency: Currency
    amount: Decimal
    recipient_account: str
    swift_code: str
    reference: str | None = None

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: Any) -> Currency:
        code = _require_str(value, "Currency").upper()
        if code not in Currency.__members__:
            raise PydanticCustomError(
                UNSUPPORTED_CURRENCY,
                "Currency {currency} is not supported",
                {"currency": code or "''"},
            )
        return Currency(code)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: Any, info: ValidationInfo) -> Decimal:
        limits = _limits(info)
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            raise PydanticCustomError(INVALID_TYPE, "Amount must be a number")
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except InvalidOperation:
            raise PydanticCustomError(INVALID_NUMBER, "Amount must be a valid number") from None
        if not amount.is_finite():
            raise PydanticCustomError(INVALID_NUMBER, "Amount must be a valid number")
        if amount <= 0:
            raise PydanticCustomError(NOT_POSITIVE, "Amount must be positive")
        if amount > limits.max_amount:
            raise PydanticCustomError(
                EXCEEDS_LIMIT,
                "Amount must not exceed {limit}",
                {"limit": f"{limits.max_amount:.2f}"},
            )
        # Reject rather than round: silently rounding would hide a user error.
        if amount != amount.quantize(CENTS):
            raise PydanticCustomError(PRECISION, "Amount can have at most 2 decimal places")

        currency = info.data.get("currency")
        if currency is not None:
            try:
                to_minor_units(amount, currency)
            except ValueError:
                raise PydanticCustomError(
                    MINOR_UNIT,
                    "Amount must be a whole number of {currency} minor units",
                    {"currency": str(currency)},
                ) from None
        return amount.quantize(CENTS)

    @field_validator("recipient_account", mode="before")
    @classmethod
    def validate_recipient_account(cls, value: Any, info: ValidationInfo) -> str:
        limits = _limits(info)
        account = _require_str(value, "Recipient account")
        pattern = rf"[0-9]{{{limits.account_min_length},{limits.account_max_length}}}"
        if not re.fullmatch(pattern, account):
            raise PydanticCustomError(
                INVALID_FORMAT,
                "Account number must be {low}-{high} digits",
                {"low": limits.account_min_length, "high": limits.account_max_length},
            )
        return account

    @field_validator("swift_code", mode="before")
    @classmethod
    def validate_swift_code(cls, value: Any) -> str:
        code = _require_str(value, "SWIFT code").upper()
        if not SWIFT_PATTERN.fullmatch(code):
            raise PydanticCustomError(INVALID_FORMAT, "Invalid SWIFT code format")
        return code

    @field_validator("reference", mode="before")
    @classmethod
    def normalize_reference(cls, value: Any, info: ValidationInfo) -> str | None:
        if value is None:
            return None
        reference = _require_str(value, "Reference")
        if not reference:
            return None
        limit = _limits(info).reference_max_length
        if len(reference) > limit:
            raise PydanticCustomError(TOO_LONG, "Reference must be at most {limit} characters", {"limit": limit})
        return reference

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount, self.currency)


class SubmissionControls(BaseModel):
    """Non-payment fields of a submission body."""

    model_config = ConfigDict(extra="ignore")

    confirmed: StrictBool = False
    nonce: str | None = Field(default=None, max_length=255)
    quoted_total: Decimal | None = None


class MoneyDisplay(BaseModel):
    principal: str
    fee: str
    total: str


class QuoteOut(BaseModel):
    currency: Currency
    principal: Decimal
    fee: Decimal
    total: Decimal
    fee_rate_bps: int
    locale: str
    display: MoneyDisplay
    confirmation_message: str
    confirmed: bool = False

    @field_serializer("principal", "fee", "total", when_used="json")
    def serialize_money(self, value: Decimal) -> str:
        return f"{value:.2f}"


class ReceiptOut(BaseModel):
    transaction_id: str
    status: TransactionStatus
    replayed: bool
    currency: Currency
    amount: Decimal
    fee: Decimal
    total: Decimal
    created_at: datetime

    @field_serializer("amount", "fee", "total", when_used="json")
    def serialize_money(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @field_serializer("created_at", when_used="json")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)
