import hashlib
import json

from remit.dto.payment import PaymentRequest

IDEMPOTENCY_KEY_MAX_LENGTH = 255


def canonical_payload(data: PaymentRequest) -> dict[str, str]:
    # Amount is already quantized to two places by validation.
    return {
        "amount": f"{data.amount:.2f}",
        "currency": str(data.currency),
        "recipient_account": data.recipient_account,
        "swift_code": data.swift_code,
        "reference": data.reference or "",
    }


def payload_hash(data: PaymentRequest) -> str:
    payload = canonical_payload(data)
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def derive_idempotency_key(user_id: str, nonce: str) -> str:
    return hashlib.sha256(f"{user_id}:{nonce}".encode("utf-8")).hexdigest()


def resolve_idempotency_key(*, user_id: str, header_key: str | None, nonce: str | None) -> str | None:
    if header_key is not None and header_key.strip():
        return header_key.strip()
    if nonce is not None and nonce.strip():
        return derive_idempotency_key(user_id, nonce.strip())
    return None
