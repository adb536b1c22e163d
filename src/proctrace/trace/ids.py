"""Identifier generation for runs, processes, traces and spans.

Run and process ids are UUIDv7 strings: the leading 48 bits hold the unix
timestamp in milliseconds, so ids sort by creation time. Within one process a
12-bit counter in ``rand_a`` keeps ids minted in the same millisecond ordered.
"""

import os
import threading
import time
import uuid

from proctrace.trace.errors import IdentityError

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16

_MAX_COUNTER = 0xFFF

_lock = threading.Lock()
_last_ms = 0
_counter = 0


def _next_timestamp() -> tuple[int, int]:
    """Return (unix_ms, counter) strictly increasing across calls."""
    global _last_ms, _counter
    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _counter = int.from_bytes(os.urandom(2), "big") & 0x3FF
        else:
            _counter += 1
            if _counter > _MAX_COUNTER:
                # Counter exhausted or clock went backwards: borrow the next millisecond.
                _last_ms += 1
                _counter = 0
        return _last_ms, _counter


def new_id() -> str:
    """Mint a time-ordered unique identifier (UUIDv7 text).

    Returns:
        Canonical hyphenated UUID string.
    """
    unix_ms, counter = _next_timestamp()
    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)

    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76  # version
    value |= counter << 64
    value |= 0b10 << 62  # variant
    value |= rand_b
    return str(uuid.UUID(int=value))


def parse_id(text: str) -> uuid.UUID:
    """Parse an identifier produced by new_id().

    Args:
        text: Identifier text, e.g. an inherited RUN_ID.

    Returns:
        The parsed UUID.

    Raises:
        IdentityError: If the text is not a valid UUID.
    """
    try:
        return uuid.UUID(text.strip())
    except (ValueError, AttributeError) as e:
        raise IdentityError(f"not a valid identifier: {text!r}") from e


def id_timestamp_ms(identifier: str) -> int:
    """Return the unix-ms timestamp embedded in a UUIDv7 identifier."""
    return parse_id(identifier).int >> 80


def new_trace_id() -> str:
    """Mint a random 128-bit trace id as 32 lowercase hex chars."""
    trace_id = uuid.uuid4().hex
    while trace_id == INVALID_TRACE_ID:
        trace_id = uuid.uuid4().hex
    return trace_id


def new_span_id() -> str:
    """Mint a random 64-bit span id as 16 lowercase hex chars."""
    span_id = os.urandom(8).hex()
    while span_id == INVALID_SPAN_ID:
        span_id = os.urandom(8).hex()
    return span_id
