"""Process spans and their scoped lifecycle.

A process owns exactly one top-level span. It is acquired with the
``process_span`` context manager, which always ends the span and hands it to
the exporter, whether the body returns, raises, or is cancelled.

Usage:
    with FileSpanExporter(path) as exporter:
        with process_span(lineage, "child", exporter) as span:
            span.add_event("child_spawning", command="grandchild")
            ...
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from proctrace.trace.lineage import ProcessLineage
from proctrace.trace.traceparent import SpanContext

if TYPE_CHECKING:
    from proctrace.trace.exporter import FileSpanExporter

SPAN_KIND_INTERNAL = 1


class StatusCode(IntEnum):
    """OTLP span status codes."""

    UNSET = 0
    OK = 1
    ERROR = 2


def otlp_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as an OTLP/JSON AnyValue."""
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, int):
        return {"intValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [otlp_value(item) for item in value]}}
    return {"stringValue": str(value)}


def otlp_attributes(attributes: dict[str, Any]) -> list[dict[str, Any]]:
    """Encode a dict as an OTLP/JSON KeyValue list, skipping None values."""
    return [
        {"key": key, "value": otlp_value(value)}
        for key, value in attributes.items()
        if value is not None
    ]


@dataclass
class SpanEvent:
    """A timestamped event recorded on a span."""

    name: str
    time_unix_nano: int
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class Span:
    """One process's unit of work.

    Attributes:
        name: Span name (the process role).
        context: Identity of this span.
        parent_span_id: Span id of the launching process's span, None for ROOT.
        start_time_unix_nano: Wall-clock start.
        end_time_unix_nano: Wall-clock end, None while the span is open.
        attributes: run_id, self_id, parent_id and any extra attributes.
        events: Events recorded while the span was open.
        status_code: OTLP status code.
        status_message: Error description for ERROR status.
    """

    name: str
    context: SpanContext
    parent_span_id: str | None = None
    start_time_unix_nano: int = field(default_factory=time.time_ns)
    end_time_unix_nano: int | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[SpanEvent] = field(default_factory=list)
    status_code: StatusCode = StatusCode.UNSET
    status_message: str = ""

    @property
    def is_ended(self) -> bool:
        """Whether end() has been called."""
        return self.end_time_unix_nano is not None

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute. Ignored once the span has ended."""
        if not self.is_ended:
            self.attributes[key] = value

    def add_event(self, name: str, **attributes: Any) -> None:
        """Record a zero-duration event at the current time."""
        if not self.is_ended:
            self.events.append(
                SpanEvent(name=name, time_unix_nano=time.time_ns(), attributes=attributes)
            )

    def set_status(self, code: StatusCode, message: str = "") -> None:
        """Set the span status. Ignored once the span has ended."""
        if not self.is_ended:
            self.status_code = code
            self.status_message = message if code is StatusCode.ERROR else ""

    def record_exception(self, exc: BaseException) -> None:
        """Record an exception event using OTel semantic attribute names."""
        self.add_event(
            "exception",
            **{"exception.type": type(exc).__name__, "exception.message": str(exc)},
        )

    def end(self) -> None:
        """End the span. Only the first call has an effect."""
        if not self.is_ended:
            self.end_time_unix_nano = max(time.time_ns(), self.start_time_unix_nano)

    def to_otlp(self) -> dict[str, Any]:
        """Encode as an OTLP/JSON span."""
        record: dict[str, Any] = {
            "traceId": self.context.trace_id,
            "spanId": self.context.span_id,
            "parentSpanId": self.parent_span_id or "",
            "flags": self.context.trace_flags,
            "name": self.name,
            "kind": SPAN_KIND_INTERNAL,
            "startTimeUnixNano": str(self.start_time_unix_nano),
            "endTimeUnixNano": str(self.end_time_unix_nano or self.start_time_unix_nano),
            "attributes": otlp_attributes(self.attributes),
            "events": [
                {
                    "name": event.name,
                    "timeUnixNano": str(event.time_unix_nano),
                    "attributes": otlp_attributes(event.attributes),
                }
                for event in self.events
            ],
            "status": {"code": int(self.status_code)},
        }
        if self.status_message:
            record["status"]["message"] = self.status_message
        return record


def new_process_span(lineage: ProcessLineage, name: str, **attributes: Any) -> Span:
    """Build the top-level span of a process from its lineage."""
    base: dict[str, Any] = {
        "run_id": lineage.run_id,
        "self_id": lineage.self_id,
        "parent_id": lineage.parent_id,
        "lineage": lineage.state.value,
    }
    base.update(attributes)
    return Span(
        name=name,
        context=lineage.span_context,
        parent_span_id=lineage.parent_span_id,
        attributes=base,
    )


@contextmanager
def process_span(
    lineage: ProcessLineage,
    name: str,
    exporter: "FileSpanExporter",
    **attributes: Any,
) -> Generator[Span, None, None]:
    """Open the process span; end and export it on every exit path.

    An exception (including cancellation) marks the span ERROR, is recorded as
    an event, and is re-raised unchanged.

    Args:
        lineage: Resolved lineage of this process.
        name: Span name.
        exporter: Receives the finished span.
        **attributes: Extra span attributes.

    Yields:
        The open span.
    """
    span = new_process_span(lineage, name, **attributes)
    try:
        yield span
    except BaseException as e:
        span.record_exception(e)
        span.set_status(StatusCode.ERROR, str(e) or type(e).__name__)
        raise
    else:
        span.set_status(StatusCode.OK)
    finally:
        span.end()
        exporter.export(span)
