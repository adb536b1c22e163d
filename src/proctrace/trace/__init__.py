"""Trace-context propagation across a chain of processes.

This package provides:
- Run, process, trace and span identifiers
- The TRACEPARENT codec
- Span lineage resolution (ROOT vs CHILD) from inherited context
- Scoped process spans and per-process file export
- Offline combination of a run's trace files
"""

from proctrace.trace.combine import (
    CombinedTrace,
    SpanNode,
    TraceFileRecord,
    build_span_tree,
    combine_run,
    read_trace_file,
)
from proctrace.trace.errors import (
    ChildFailed,
    CombineError,
    DecodeError,
    DecodeErrorKind,
    ExportError,
    IdentityError,
    LaunchError,
    ProcTraceError,
    SpawnFailed,
)
from proctrace.trace.exporter import FileSpanExporter, trace_file_path
from proctrace.trace.ids import new_id, new_span_id, new_trace_id, parse_id
from proctrace.trace.lineage import (
    InheritedContext,
    LineageState,
    OutgoingContext,
    ProcessLineage,
    SpanLineageManager,
)
from proctrace.trace.span import Span, StatusCode, process_span
from proctrace.trace.traceparent import SpanContext, TraceParent, decode, encode

__all__ = [
    # Identifiers
    "new_id",
    "parse_id",
    "new_trace_id",
    "new_span_id",
    # Codec
    "SpanContext",
    "TraceParent",
    "encode",
    "decode",
    # Lineage
    "InheritedContext",
    "OutgoingContext",
    "ProcessLineage",
    "LineageState",
    "SpanLineageManager",
    # Spans and export
    "Span",
    "StatusCode",
    "process_span",
    "FileSpanExporter",
    "trace_file_path",
    # Combination
    "TraceFileRecord",
    "CombinedTrace",
    "SpanNode",
    "read_trace_file",
    "combine_run",
    "build_span_tree",
    # Errors
    "ProcTraceError",
    "IdentityError",
    "DecodeError",
    "DecodeErrorKind",
    "LaunchError",
    "SpawnFailed",
    "ChildFailed",
    "ExportError",
    "CombineError",
]
