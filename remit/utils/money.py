from dataclasses import dataclass
from decimal import Decimal

from remit.utils.enums import Currency

CENTS = Decimal("0.01")

CURRENCY_SYMBOLS: dict[Currency, str] = {
    Currency.USD: "$",
    Currency.EUR: "€",
    Currency.ZAR: "R",
    Currency.GBP: "£",
    Currency.JPY: "¥",
}


@dataclass(frozen=True)
class LocaleFormat:
    group_separator: str
    decimal_separator: str
    symbol_first: bool
    symbol_spacing: str = ""


LOCALE_FORMATS: dict[str, LocaleFormat] = {
    "en-US": LocaleFormat(",", ".", True),
    "en-GB": LocaleFormat(",", ".", True),
    "en-ZA": LocaleFormat("\u00a0", ",", True),
    "de-DE": LocaleFormat(".", ",", False, "\u00a0"),
    "fr-FR": LocaleFormat("\u202f", ",", False, "\u00a0"),
    "ja-JP": LocaleFormat(",", ".", True),
}
LANGUAGE_DEFAULTS = {"en": "en-US", "de": "de-DE", "fr": "fr-FR", "ja": "ja-JP"}


def to_minor_units(amount: Decimal, currency: Currency) -> int:
    """Convert an amount to integer minor units; raises ValueError if inexact."""
    scaled = amount.scaleb(currency.exponent)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} is not representable in {currency} minor units")
    return int(scaled)


def from_minor_units(minor: int, currency: Currency) -> Decimal:
    return Decimal(minor).scaleb(-currency.exponent).quantize(CENTS)


def percentage_of(minor: int, rate_bps: int) -> int:
    """Basis-point share of ``minor``, rounded half-up to a whole minor unit."""
    numerator = minor * rate_bps
    quotient, remainder = divmod(numerator, 10_000)
    if remainder * 2 >= 10_000:
        quotient += 1
    return quotient


def resolve_locale(locale: str | None, default: str = "en-US") -> str:
    if not locale:
        return default
    candidate = locale.strip().replace("_", "-")
    for known in LOCALE_FORMATS:
        if known.lower() == candidate.lower():
            return known
    language = candidate.split("-", 1)[0].lower()
    return LANGUAGE_DEFAULTS.get(language, default)


def format_money(minor: int, currency: Currency, locale: str | None = None, *, default_locale: str = "en-US") -> str:
    fmt = LOCALE_FORMATS[resolve_locale(locale, default_locale)]
    exponent = currency.exponent
    whole, fraction = divmod(abs(minor), 10**exponent) if exponent else (abs(minor), 0)

    digits = f"{whole:,}".replace(",", fmt.group_separator)
    if exponent:
        digits = f"{digits}{fmt.decimal_separator}{fraction:0{exponent}d}"
    sign = "-" if minor < 0 else ""
    symbol = CURRENCY_SYMBOLS[currency]
    if fmt.symbol_first:
        return f"{sign}{symbol}{fmt.symbol_spacing}{digits}"
    return f"{sign}{digits}{fmt.symbol_spacing}{symbol}"
