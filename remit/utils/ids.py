import os
import time
import uuid

_MAX_TIMESTAMP_MS = (1 << 48) - 1


def new_transaction_id(now_ms: int | None = None) -> str:
    """Return a UUIDv7 string: 48-bit unix-ms timestamp followed by random bits.

    Ids generated later sort after earlier ones (at millisecond resolution),
    and the 74 random bits keep concurrent generation collision-resistant.
    Uniqueness is still enforced by the database, not by this function.
    """
    timestamp_ms = time.time_ns() // 1_000_000 if now_ms is None else now_ms
    if not 0 <= timestamp_ms <= _MAX_TIMESTAMP_MS:
        raise ValueError("timestamp out of range for UUIDv7")

    random_bits = int.from_bytes(os.urandom(10), "big")
    rand_a = (random_bits >> 62) & 0xFFF
    rand_b = random_bits & ((1 << 62) - 1)

    value = timestamp_ms << 80
    value |= 0x7 << 76
    value |= rand_a << 64
    value |= 0b10 << 62
    value |= rand_b
    return str(uuid.UUID(int=value))


def timestamp_ms_of(transaction_id: str) -> int:
    return uuid.UUID(transaction_id).int >> 80
