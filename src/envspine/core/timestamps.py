"""
ULID generation and timestamp utilities (stdlib-only).

Job IDs are ULID-like so that listing jobs by ID also lists them by
submission time.
"""

import random
import time
from datetime import UTC, datetime

_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, Crockford base32, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def _encode_base32(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(_ENCODING[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def to_iso8601(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def from_iso8601(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
