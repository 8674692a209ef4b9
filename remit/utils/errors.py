from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    code: str
    message: str


class PaymentError(Exception):
    code = "payment_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "fields": []}


class ValidationError(PaymentError):
    """Client-fixable; lists every failing field, never partially applied."""

    code = "validation_error"
    status_code = 422

    def __init__(self, field_errors: list[FieldError], message: str = "Payment request is invalid") -> None:
        super().__init__(message)
        self.field_errors = list(field_errors)

    @classmethod
    def single(cls, field_name: str, code: str, message: str) -> "ValidationError":
        return cls([FieldError(field=field_name, code=code, message=message)], message=message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["fields"] = [
            {"field": error.field, "code": error.code, "message": error.message} for error in self.field_errors
        ]
        return body


class RetryableError(PaymentError):
    """Nothing was committed; the caller may safely retry."""

    code = "retryable_error"
    status_code = 503

    def __init__(self, message: str, *, retry_after_seconds: int = 1) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ConflictError(PaymentError):
    code = "conflict"
    status_code = 409


class AuthorizationError(PaymentError):
    code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required", *, forbidden: bool = False) -> None:
        super().__init__(message, code="forbidden" if forbidden else None)
        if forbidden:
            self.status_code = 403


class NotFoundError(PaymentError):
    code = "not_found"
    status_code = 404
