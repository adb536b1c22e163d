"""Offline combination of per-process trace files.

After a run, every process of the chain has left one file under
``<trace_dir>/<run_id>/``. This module validates those files against a typed
record shape, merges their ``resourceSpans`` into one artifact, and rebuilds
the span tree for inspection.
"""

import pathlib
from dataclasses import dataclass, field
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proctrace.telemetry import TRACE_FILE_READ, TRACE_FILES_COMBINED, get_logger
from proctrace.trace.errors import CombineError
from proctrace.trace.exporter import is_trace_file

log = get_logger(__name__)

COMBINED_FILE_NAME = "combined.json"


class TraceFileRecord(BaseModel):
    """One JSON record of a trace file. ``resourceSpans`` is required."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    resource_spans: list[dict[str, Any]] = Field(..., alias="resourceSpans")


class CombinedTrace(BaseModel):
    """Merged artifact for one run."""

    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    source_files: list[str] = Field(default_factory=list, alias="sourceFiles")
    resource_spans: list[dict[str, Any]] = Field(default_factory=list, alias="resourceSpans")

    def to_json(self) -> bytes:
        """Serialize with the camelCase field names."""
        return orjson.dumps(self.model_dump(by_alias=True), option=orjson.OPT_INDENT_2)


def _parse_records(path: pathlib.Path, content: bytes) -> list[Any]:
    stripped = content.strip()
    if not stripped:
        return []
    try:
        # A single (possibly pretty-printed) JSON document.
        return [orjson.loads(stripped)]
    except orjson.JSONDecodeError:
        pass

    documents = []
    for line_no, line in enumerate(stripped.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            documents.append(orjson.loads(line))
        except orjson.JSONDecodeError as e:
            raise CombineError(f"{path}:{line_no}: invalid JSON: {e}") from e
    return documents


def read_trace_file(path: pathlib.Path) -> list[TraceFileRecord]:
    """Read and validate every record of one trace file.

    Args:
        path: A per-process trace file (JSON lines, or one JSON document).

    Returns:
        Validated records, in file order.

    Raises:
        CombineError: If the file cannot be read, is not JSON, or a record
            lacks a ``resourceSpans`` array.
    """
    try:
        content = path.read_bytes()
    except OSError as e:
        raise CombineError(f"cannot read trace file {path}: {e}") from e

    records = []
    for index, document in enumerate(_parse_records(path, content)):
        if not isinstance(document, dict):
            raise CombineError(f"{path}: record {index} is not a JSON object")
        try:
            records.append(TraceFileRecord.model_validate(document))
        except ValidationError as e:
            raise CombineError(f"{path}: record {index} has no valid resourceSpans: {e}") from e

    log.debug(TRACE_FILE_READ, path=str(path), records=len(records))
    return records


def run_trace_files(trace_dir: pathlib.Path, run_id: str) -> list[pathlib.Path]:
    """Per-process trace files of a run, sorted by name.

    Only names shaped ``<role>-<self_id>.json`` are selected, so combined
    artifacts written into the run directory are never merged again.

    Raises:
        CombineError: If the run directory does not exist.
    """
    run_dir = trace_dir / run_id
    if not run_dir.is_dir():
        raise CombineError(f"no trace directory for run {run_id}: {run_dir}")
    return sorted(path for path in run_dir.glob("*.json") if is_trace_file(path))


def combine_files(run_id: str, paths: list[pathlib.Path]) -> CombinedTrace:
    """Merge the ``resourceSpans`` of the given files, preserving each entry unchanged."""
    combined = CombinedTrace(run_id=run_id)
    for path in paths:
        for record in read_trace_file(path):
            combined.resource_spans.extend(record.resource_spans)
        combined.source_files.append(path.name)
    return combined


def combine_run(
    trace_dir: pathlib.Path, run_id: str, output: pathlib.Path | None = None
) -> CombinedTrace:
    """Combine every trace file of a run and write the merged artifact.

    Args:
        trace_dir: Root trace directory.
        run_id: Run to combine.
        output: Destination file. Defaults to ``<trace_dir>/<run_id>/combined.json``.

    Returns:
        The combined trace.

    Raises:
        CombineError: If the run has no trace files or a file is invalid.
    """
    paths = run_trace_files(trace_dir, run_id)
    if output is not None:
        paths = [path for path in paths if path.resolve() != output.resolve()]
    if not paths:
        raise CombineError(f"run {run_id} has no trace files")

    combined = combine_files(run_id, paths)

    destination = output or trace_dir / run_id / COMBINED_FILE_NAME
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(combined.to_json())

    log.info(
        TRACE_FILES_COMBINED,
        run_id=run_id,
        files=len(paths),
        resource_spans=len(combined.resource_spans),
        output=str(destination),
    )
    return combined


def iter_spans(resource_spans: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Flatten OTLP/JSON ResourceSpans into their span objects."""
    spans = []
    for entry in resource_spans:
        for scope_spans in entry.get("scopeSpans", []):
            spans.extend(scope_spans.get("spans", []))
    return spans


def _attribute(span: dict[str, Any], key: str) -> Any:
    for attribute in span.get("attributes", []):
        if attribute.get("key") == key:
            value = attribute.get("value", {})
            return next(iter(value.values()), None)
    return None


@dataclass
class SpanNode:
    """A span and its children in a reconstructed trace tree."""

    span_id: str
    name: str
    trace_id: str
    parent_span_id: str | None
    start_time_unix_nano: int
    end_time_unix_nano: int
    status_code: int = 0
    attributes: dict[str, Any] = field(default_factory=dict)
    children: list["SpanNode"] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        """Span duration in milliseconds."""
        return round((self.end_time_unix_nano - self.start_time_unix_nano) / 1_000_000, 2)

    def to_dict(self) -> dict[str, Any]:
        """Nested dict representation."""
        return {
            "spanId": self.span_id,
            "name": self.name,
            "traceId": self.trace_id,
            "parentSpanId": self.parent_span_id,
            "durationMs": self.duration_ms,
            "statusCode": self.status_code,
            "attributes": self.attributes,
            "children": [child.to_dict() for child in self.children],
        }


def build_span_tree(resource_spans: list[dict[str, Any]]) -> list[SpanNode]:
    """Rebuild the trace tree from merged ResourceSpans.

    Spans whose parent is absent from the input are returned as roots, so a
    broken link shows up as an extra root rather than disappearing.

    Returns:
        Root nodes sorted by start time; children sorted the same way.
    """
    nodes: dict[str, SpanNode] = {}
    for span in iter_spans(resource_spans):
        span_id = span.get("spanId", "")
        nodes[span_id] = SpanNode(
            span_id=span_id,
            name=span.get("name", ""),
            trace_id=span.get("traceId", ""),
            parent_span_id=span.get("parentSpanId") or None,
            start_time_unix_nano=int(span.get("startTimeUnixNano", 0)),
            end_time_unix_nano=int(span.get("endTimeUnixNano", 0)),
            status_code=int(span.get("status", {}).get("code", 0)),
            attributes={
                key: _attribute(span, key) for key in ("run_id", "self_id", "parent_id")
            },
        )

    roots = []
    for node in nodes.values():
        parent = nodes.get(node.parent_span_id) if node.parent_span_id else None
        if parent is None:
            roots.append(node)
        else:
            parent.children.append(node)

    def _sort(items: list[SpanNode]) -> None:
        items.sort(key=lambda n: n.start_time_unix_nano)
        for item in items:
            _sort(item.children)

    _sort(roots)
    return roots
