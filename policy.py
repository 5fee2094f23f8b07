"""Retention and size rules for stored pastes.

Longer-lived pastes get a smaller size allowance. The limit applies to the
ciphertext as sent by the client (UTF-8 bytes) and is checked before any
write reaches the backend.
"""
from typing import Optional

from constants import (
    DEFAULT_TTL_SECONDS,
    LONG_TERM_MAX_BYTES,
    LONG_TERM_THRESHOLD_SECONDS,
    MAX_TTL_SECONDS,
    PERMANENT_TTL_FLAG,
    SHORT_TERM_MAX_BYTES,
)
from errors import PayloadTooLarge


def resolve_ttl(ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS) -> Optional[int]:
    """Normalize a requested TTL.

    ``None`` (or the legacy ``-1`` flag) means permanent and is returned as
    ``None``. Other non-positive values fall back to the default; finite
    values are clamped to the 30 day maximum.
    """
    if ttl_seconds is None or ttl_seconds == PERMANENT_TTL_FLAG:
        return None
    if ttl_seconds <= 0:
        return DEFAULT_TTL_SECONDS
    return min(int(ttl_seconds), MAX_TTL_SECONDS)


def max_bytes(ttl_seconds: Optional[int]) -> int:
    if ttl_seconds is None or ttl_seconds > LONG_TERM_THRESHOLD_SECONDS:
        return LONG_TERM_MAX_BYTES
    return SHORT_TERM_MAX_BYTES


def payload_size(ciphertext: str) -> int:
    return len(ciphertext.encode("utf-8"))


def enforce_size(ciphertext: str, ttl_seconds: Optional[int]) -> None:
    limit = max_bytes(ttl_seconds)
    size = payload_size(ciphertext)
    if size > limit:
        raise PayloadTooLarge(
            f"Payload too large. Received {size / (1024 * 1024):.2f} MB, "
            f"the limit for this retention is {limit / (1024 * 1024):.2f} MB."
        )
