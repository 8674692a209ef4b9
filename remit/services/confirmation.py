from dataclasses import dataclass, field
from decimal import Decimal

from remit.dto.payment import PaymentRequest
from remit.utils.enums import Currency
from remit.utils.money import format_money, from_minor_units, percentage_of, resolve_locale


@dataclass(frozen=True)
class PaymentSummary:
    currency: Currency
    principal_minor: int
    fee_minor: int
    fee_rate_bps: int

    @property
    def total_minor(self) -> int:
        return self.principal_minor + self.fee_minor

    @property
    def principal(self) -> Decimal:
        return from_minor_units(self.principal_minor, self.currency)

    @property
    def fee(self) -> Decimal:
        return from_minor_units(self.fee_minor, self.currency)

    @property
    def total(self) -> Decimal:
        return from_minor_units(self.total_minor, self.currency)

    def display(self, locale: str | None = None) -> dict[str, str]:
        return {
            name: format_money(minor, self.currency, locale)
            for name, minor in (
                ("principal", self.principal_minor),
                ("fee", self.fee_minor),
                ("total", self.total_minor),
            )
        }


class ConfirmationDeclined(RuntimeError):
    pass


@dataclass
class PaymentConfirmation:
    request: PaymentRequest
    summary: PaymentSummary
    locale: str
    confirmed: bool = field(default=False, init=False)
    declined: bool = field(default=False, init=False)

    def confirm(self) -> "PaymentConfirmation":
        if self.declined:
            raise ConfirmationDeclined("a declined payment cannot be confirmed")
        self.confirmed = True
        return self

    def decline(self) -> None:
        self.confirmed = False
        self.declined = True

    def message(self) -> str:
        shown = self.summary.display(self.locale)
        return (
            f"Send {shown['principal']} to account {self.request.recipient_account}? "
            f"A fee of {shown['fee']} applies; {shown['total']} will be debited."
        )


class ConfirmationGate:
    def __init__(self, *, fee_rate_bps: int, default_locale: str = "en-US"):
        self.fee_rate_bps = fee_rate_bps
        self.default_locale = default_locale

    def summarize(self, request: PaymentRequest) -> PaymentSummary:
        principal_minor = request.amount_minor
        return PaymentSummary(
            currency=request.currency,
            principal_minor=principal_minor,
            fee_minor=percentage_of(principal_minor, self.fee_rate_bps),
            fee_rate_bps=self.fee_rate_bps,
        )

    def prepare(self, request: PaymentRequest, locale: str | None = None) -> PaymentConfirmation:
        return PaymentConfirmation(
            request=request,
            summary=self.summarize(request),
            locale=resolve_locale(locale, self.default_locale),
        )
