from enum import StrEnum


class TransactionStatus(StrEnum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    SENT = "Sent"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.SENT, TransactionStatus.FAILED)

    def can_transition_to(self, target: "TransactionStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


# Forward-only lifecycle; Failed is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.VERIFIED, TransactionStatus.FAILED}),
    TransactionStatus.VERIFIED: frozenset({TransactionStatus.SENT, TransactionStatus.FAILED}),
    TransactionStatus.SENT: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


class Currency(StrEnum):
    USD = "USD"
    EUR = "EUR"
    ZAR = "ZAR"
    GBP = "GBP"
    JPY = "JPY"

    @property
    def exponent(self) -> int:
        return CURRENCY_EXPONENTS[self]


CURRENCY_EXPONENTS: dict[Currency, int] = {
    Currency.USD: 2,
    Currency.EUR: 2,
    Currency.ZAR: 2,
    Currency.GBP: 2,
    Currency.JPY: 0,
}
