"""TRACEPARENT encoding and decoding.

The wire value follows the W3C trace-context ``traceparent`` header::

    00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01
    |  |                                |                |
    |  trace id (32 hex)                span id (16 hex) flags (1 byte, hex)
    version (2 hex)

Decoding never aborts: every rejection is a DecodeError carrying a
DecodeErrorKind so callers can decide what a broken link means for them.
"""

import string
from dataclasses import dataclass

from proctrace.trace.errors import DecodeError, DecodeErrorKind
from proctrace.trace.ids import INVALID_SPAN_ID, INVALID_TRACE_ID

VERSION = "00"
INVALID_VERSION = "ff"
TRACEPARENT_ENV = "TRACEPARENT"

FLAG_SAMPLED = 0x01
DEFAULT_TRACE_FLAGS = FLAG_SAMPLED

_HEX_DIGITS = frozenset(string.hexdigits)


def _is_hex(value: str, width: int) -> bool:
    return len(value) == width and all(ch in _HEX_DIGITS for ch in value)


@dataclass(frozen=True)
class SpanContext:
    """Identity of one span: what crosses a process boundary.

    Attributes:
        trace_id: 32 lowercase hex chars shared by the whole trace.
        span_id: 16 lowercase hex chars unique to the span.
        trace_flags: One byte of flags, passed through unchanged.
        is_remote: True when the context was decoded from an inherited value.
    """

    trace_id: str
    span_id: str
    trace_flags: int = DEFAULT_TRACE_FLAGS
    is_remote: bool = False

    @property
    def sampled(self) -> bool:
        """Whether the sampled flag is set."""
        return bool(self.trace_flags & FLAG_SAMPLED)


@dataclass(frozen=True)
class TraceParent:
    """Decoded TRACEPARENT value.

    Attributes:
        version: Two-character version tag.
        trace_id: Trace id of the span that published the value.
        parent_id: Span id of the span that published the value.
        trace_flags: Trace flags byte.
    """

    version: str
    trace_id: str
    parent_id: str
    trace_flags: int

    @classmethod
    def from_header(cls, value: str) -> "TraceParent":
        """Decode a wire value. See decode()."""
        return decode(value)

    @classmethod
    def from_span_context(cls, span_context: SpanContext) -> "TraceParent":
        """Build the value a span publishes for the processes it spawns."""
        return cls(
            version=VERSION,
            trace_id=span_context.trace_id,
            parent_id=span_context.span_id,
            trace_flags=span_context.trace_flags,
        )

    def to_header(self) -> str:
        """Encode to the canonical wire form."""
        return f"{self.version}-{self.trace_id}-{self.parent_id}-{self.trace_flags:02x}"

    def to_span_context(self) -> SpanContext:
        """Remote span context of the publishing span."""
        return SpanContext(
            trace_id=self.trace_id,
            span_id=self.parent_id,
            trace_flags=self.trace_flags,
            is_remote=True,
        )

    def __str__(self) -> str:
        return self.to_header()


def encode(trace_id: str, span_id: str, trace_flags: int = DEFAULT_TRACE_FLAGS) -> str:
    """Encode a span identity as a TRACEPARENT value.

    Args:
        trace_id: 32 hex chars.
        span_id: 16 hex chars.
        trace_flags: Flags byte (0-255).

    Returns:
        ``00-<trace_id>-<span_id>-<flags as 2 hex digits>``.

    Raises:
        ValueError: If an argument is outside its domain. Ids minted by
            proctrace.trace.ids always satisfy it.
    """
    if not _is_hex(trace_id, 32):
        raise ValueError(f"trace_id must be 32 hex chars, got {trace_id!r}")
    if not _is_hex(span_id, 16):
        raise ValueError(f"span_id must be 16 hex chars, got {span_id!r}")
    if not 0 <= trace_flags <= 0xFF:
        raise ValueError(f"trace_flags must fit in one byte, got {trace_flags}")
    return TraceParent(VERSION, trace_id.lower(), span_id.lower(), trace_flags).to_header()


def decode(value: str) -> TraceParent:
    """Decode and strictly validate a TRACEPARENT value.

    Args:
        value: Raw value, typically read from the TRACEPARENT environment variable.

    Returns:
        The decoded TraceParent, ids normalized to lowercase.

    Raises:
        DecodeError: MALFORMED_FORMAT for a wrong field count or version,
            INVALID_ID for a bad trace or span id, INVALID_FLAGS for flags
            that are not a single hex byte.
    """
    raw = value.strip()
    fields = raw.split("-")
    if len(fields) != 4:
        raise DecodeError(
            DecodeErrorKind.MALFORMED_FORMAT, value, f"expected 4 fields, got {len(fields)}"
        )

    version, trace_id, parent_id, flags = fields

    if not _is_hex(version, 2) or version.lower() == INVALID_VERSION:
        raise DecodeError(DecodeErrorKind.MALFORMED_FORMAT, value, f"bad version {version!r}")

    if not _is_hex(trace_id, 32) or trace_id == INVALID_TRACE_ID:
        raise DecodeError(DecodeErrorKind.INVALID_ID, value, f"bad trace id {trace_id!r}")

    if not _is_hex(parent_id, 16) or parent_id == INVALID_SPAN_ID:
        raise DecodeError(DecodeErrorKind.INVALID_ID, value, f"bad span id {parent_id!r}")

    if not 1 <= len(flags) <= 2 or not all(ch in _HEX_DIGITS for ch in flags):
        raise DecodeError(DecodeErrorKind.INVALID_FLAGS, value, f"bad trace flags {flags!r}")

    return TraceParent(
        version=version.lower(),
        trace_id=trace_id.lower(),
        parent_id=parent_id.lower(),
        trace_flags=int(flags, 16),
    )
