from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from remit.dto.payment import (
    INVALID_FORMAT,
    INVALID_TYPE,
    REASON_CODES,
    REQUIRED,
    TOO_LONG,
    PaymentRequest,
    ValidationLimits,
)
from remit.utils.errors import FieldError, ValidationError
from remit.utils.result import Err, Ok, Result


PYDANTIC_CODES = {
    "missing": REQUIRED,
    "string_too_short": REQUIRED,
    "string_too_long": TOO_LONG,
    "string_pattern_mismatch": INVALID_FORMAT,
}


def field_name(loc) -> str:
    return ".".join(str(part) for part in loc) if loc else "__root__"


def reason_code(error_type: str) -> str:
    if error_type in REASON_CODES:
        return error_type
    return PYDANTIC_CODES.get(error_type, INVALID_TYPE)


def field_errors_from(exc: PydanticValidationError) -> list[FieldError]:
    errors = []
    for error in exc.errors(include_url=False):
        message = "This field is required" if error["type"] == "missing" else error["msg"]
        errors.append(FieldError(field=field_name(error["loc"]), code=reason_code(error["type"]), message=message))
    return errors


def validate_payment_request(
    raw: Any, limits: ValidationLimits | None = None
) -> Result[PaymentRequest, ValidationError]:
    if not isinstance(raw, Mapping):
        return Err(ValidationError.single("__root__", INVALID_TYPE, "Payment request must be a JSON object"))
    try:
        request = PaymentRequest.model_validate(dict(raw), context={"limits": limits or ValidationLimits()})
    except PydanticValidationError as exc:
        return Err(ValidationError(field_errors_from(exc)))
    return Ok(request)
